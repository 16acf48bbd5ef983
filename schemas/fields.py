from pydantic import AfterValidator
from typing import Annotated


def _encodable(value: str) -> str:
    # json.loads lets lone surrogates ("\ud800") through, Redis cannot store them
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValueError("string is not valid UTF-8")
    return value


Utf8Str = Annotated[str, AfterValidator(_encodable)]
