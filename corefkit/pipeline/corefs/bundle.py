from __future__ import annotations
from dataclasses import dataclass
from typing import Union
import os, json, pickle
import torch
from corefkit.pipeline.corefs.errors import CorruptModelError, ModelNotFoundError
from corefkit.pipeline.corefs.models import (
    MODEL_CLASSES,
    PipelinedCorefModel,
    SpanCorefModel,
)
from corefkit.pipeline.corefs.vocabulary import Vocabulary


CorefModel = Union[PipelinedCorefModel, SpanCorefModel]

CONFIG_FILE = "config.json"
VOCABULARY_FILE = "vocabulary.json"


@dataclass(frozen=True)
class CoreferenceBundle:
    """A trained coreference model, along with the vocabulary that
    produced it.  The model is put in eval mode when the bundle is
    created.

    .. note::

        A bundle is not supposed to be modified after training, so it
        can be shared by several resolvers.  To use a bundle on another
        device, load it again with :func:`load_bundle`.
    """

    model: CorefModel
    vocabulary: Vocabulary

    def __post_init__(self):
        self.model.eval()

    @property
    def kind(self) -> str:
        return self.model.kind


def save_bundle(bundle: CoreferenceBundle, path: str):
    """Save a bundle to a directory.

    Each sub-model state dict is saved to its own ``{name}.pt`` file.
    The vocabulary and the model hyperparameters are saved as JSON.
    """
    path = os.path.expanduser(path)
    os.makedirs(path, exist_ok=True)

    for name, module in bundle.model.named_children():
        torch.save(module.state_dict(), os.path.join(path, f"{name}.pt"))

    with open(os.path.join(path, VOCABULARY_FILE), "w") as f:
        json.dump(bundle.vocabulary.to_dict(), f)

    with open(os.path.join(path, CONFIG_FILE), "w") as f:
        json.dump(
            {"kind": bundle.model.kind, "hyperparameters": bundle.model.hyperparameters},
            f,
            indent=2,
        )


def _load_json(path: str) -> dict:
    if not os.path.isfile(path):
        raise ModelNotFoundError(path, "file not found")
    try:
        with open(path) as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptModelError(path, f"invalid JSON ({e})") from e


def load_bundle(path: str, device: Union[str, torch.device] = "cpu") -> CoreferenceBundle:
    """Load a bundle saved with :func:`save_bundle`.

    :param path: bundle directory
    :param device: device on which to load the model

    :raise ModelNotFoundError: when the bundle directory, or one of
        its files, does not exist
    :raise CorruptModelError: when a bundle file can't be read back
    """
    path = os.path.expanduser(path)
    if not os.path.isdir(path):
        raise ModelNotFoundError(path, "bundle directory not found")

    config = _load_json(os.path.join(path, CONFIG_FILE))
    try:
        model_class = MODEL_CLASSES[config["kind"]]
        model = model_class(**config["hyperparameters"])
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptModelError(path, f"invalid model configuration ({e})") from e

    try:
        vocabulary = Vocabulary.from_dict(_load_json(os.path.join(path, VOCABULARY_FILE)))
    except (AssertionError, AttributeError, TypeError, ValueError) as e:
        raise CorruptModelError(path, "invalid vocabulary") from e

    for name, module in model.named_children():
        module_path = os.path.join(path, f"{name}.pt")
        if not os.path.isfile(module_path):
            raise ModelNotFoundError(module_path, "file not found")
        try:
            state_dict = torch.load(module_path, map_location=device, weights_only=True)
            module.load_state_dict(state_dict)
        except (RuntimeError, ValueError, EOFError, pickle.UnpicklingError) as e:
            raise CorruptModelError(module_path, f"can't load state dict ({e})") from e

    model.to(device)
    return CoreferenceBundle(model, vocabulary)
