from typing import Literal, Optional

males_pronouns = {
    "eng": {"he", "him", "his", "himself"},
}
females_pronouns = {
    "eng": {"she", "her", "hers", "herself"},
}
neutral_pronouns = {
    "eng": {"it", "its", "itself"},
}
plural_pronouns = {
    "eng": {"they", "them", "their", "theirs", "themselves", "we", "us", "our", "ours"},
}
other_pronouns = {
    "eng": {"i", "me", "my", "mine", "myself", "you", "your", "yours", "yourself"},
}


def _check_lang(lang: str):
    if not lang in males_pronouns:
        raise ValueError(
            f"unsupported lang: {lang} (supported langs: {list(males_pronouns.keys())})"
        )


def is_a_pronoun(word: str, lang: str = "eng") -> bool:
    _check_lang(lang)
    return any(
        word.lower() in pronouns[lang]
        for pronouns in (
            males_pronouns,
            females_pronouns,
            neutral_pronouns,
            plural_pronouns,
            other_pronouns,
        )
    )


def pronoun_gender(
    word: str, lang: str = "eng"
) -> Optional[Literal["male", "female", "neutral", "plural"]]:
    """
    :return: the gender of a pronoun, or ``None`` if it is unknown
        (or if ``word`` is not a pronoun)
    """
    _check_lang(lang)
    word = word.lower()
    if word in males_pronouns[lang]:
        return "male"
    if word in females_pronouns[lang]:
        return "female"
    if word in neutral_pronouns[lang]:
        return "neutral"
    if word in plural_pronouns[lang]:
        return "plural"
    return None


def pronoun_number(
    word: str, lang: str = "eng"
) -> Optional[Literal["singular", "plural"]]:
    _check_lang(lang)
    word = word.lower()
    if word in plural_pronouns[lang]:
        return "plural"
    if is_a_pronoun(word, lang):
        return "singular"
    return None
