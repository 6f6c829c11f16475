import os
from corefkit.pipeline.corefs.datas import (
    infer_mention_type,
    load_conll2012_directory,
    load_conll2012_documents,
)


CONLL_SAMPLE = """#begin document (test/doc_0); part 000
test/doc_0   0   0   John     NNP   -   -   -   -   -   -   (0)
test/doc_0   0   1   works    VBZ   -   -   -   -   -   -   -
test/doc_0   0   2   at       IN    -   -   -   -   -   -   -
test/doc_0   0   3   Google   NNP   -   -   -   -   -   -   (1)
test/doc_0   0   4   .        .     -   -   -   -   -   -   -

test/doc_0   0   0   He       PRP   -   -   -   -   -   -   (0)
test/doc_0   0   1   loves    VBZ   -   -   -   -   -   -   -
test/doc_0   0   2   the      DT    -   -   -   -   -   -   (1|(2
test/doc_0   0   3   company  NN    -   -   -   -   -   -   1)
test/doc_0   0   4   .        .     -   -   -   -   -   -   2)

#end document
"""


def _write_sample(path) -> str:
    with open(path, "w") as f:
        f.write(CONLL_SAMPLE)
    return str(path)


def test_load_conll2012_sentences_and_chains(tmp_path):
    documents = load_conll2012_documents(_write_sample(tmp_path / "doc.conll"))
    assert len(documents) == 1
    document = documents[0]
    assert document.id == "test/doc_0"
    assert document.sentences == [
        ["John", "works", "at", "Google", "."],
        ["He", "loves", "the", "company", "."],
    ]

    chains = {
        tuple((m.start_idx, m.end_idx) for m in chain.mentions)
        for chain in document.coref_chains
    }
    assert chains == {((0, 0), (5, 5)), ((3, 3), (7, 8)), ((7, 9),)}


def test_conll2012_mentions_attributes(tmp_path):
    document = load_conll2012_documents(_write_sample(tmp_path / "doc.conll"))[0]
    mentions = {(m.start_idx, m.end_idx): m for m in document.mentions()}

    he = mentions[(5, 5)]
    assert he.type == "pronoun"
    assert he.gender == "male"
    assert he.sentence_idx == 1
    assert he.token_idx == 0

    assert mentions[(0, 0)].type == "proper_name"
    assert mentions[(7, 8)].type == "definite_np"
    assert mentions[(7, 8)].text == "the company"

    john_chain = next(c for c in document.coref_chains if mentions[(0, 0)] in c)
    assert john_chain.representative == "John"


def test_load_conll2012_directory(tmp_path):
    os.makedirs(tmp_path / "sub")
    _write_sample(tmp_path / "a.conll")
    _write_sample(tmp_path / "sub" / "b.conll")
    assert len(load_conll2012_directory(str(tmp_path))) == 2
    assert len(load_conll2012_directory(str(tmp_path / "a.conll"))) == 1


def test_infer_mention_type():
    assert infer_mention_type(["she"], ["PRP"]) == "pronoun"
    assert infer_mention_type(["Zarth", "Arn"], ["NNP", "NNP"]) == "proper_name"
    assert infer_mention_type(["the", "princess"], ["DT", "NN"]) == "definite_np"
    assert infer_mention_type(["a", "ship"], ["DT", "NN"]) == "span"
