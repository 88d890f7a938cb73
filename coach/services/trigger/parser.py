"""Detects the wake word in a transcript and extracts the question that follows it."""

import re

TRIGGER_WORD = "coach"
TRIGGER_WINDOW = 3

_NON_ALPHA = re.compile(r"[^a-z]")
_HEY_COACH = re.compile(r"^\s*hey[, ]+coach[!,. ]+(.*)$", re.IGNORECASE | re.DOTALL)


def _normalize_token(token: str) -> str:
    return _NON_ALPHA.sub("", token.lower())


def extract_assistant_query(transcript: str) -> str | None:
    """
    Return the question addressed to the coach, or None if it was not addressed.

    The trigger word must be one of the first three words (punctuation and case
    ignored); everything after it is the query. Failing that, a transcript
    starting with "hey coach" followed by punctuation or a space also counts.

    >>> extract_assistant_query("ok coach what's our build order")
    "what's our build order"
    >>> extract_assistant_query("Hey, Coach! rush them now")
    'rush them now'
    """
    if not transcript:
        return None

    tokens = transcript.split()
    for index, token in enumerate(tokens[:TRIGGER_WINDOW]):
        if _normalize_token(token) == TRIGGER_WORD:
            query = " ".join(tokens[index + 1 :]).strip()
            return query or None

    match = _HEY_COACH.match(transcript)
    if match:
        query = match.group(1).strip()
        return query or None

    return None
