from dataclasses import dataclass
from enum import Enum


class Opinion(Enum):
    """A viewer's judgment on a watched movie. Absence of an opinion is ``None``."""
    LIKE = "LIKE"
    DISLIKE = "DISLIKE"

    @classmethod
    def parse(cls, value: str | None) -> "Opinion | None":
        """Map a stored column value back to an Opinion (NULL -> None)."""
        if value is None:
            return None
        return cls(value.upper())


class StoreResult(Enum):
    OK = "ok"
    NOT_EXISTS = "not_exists"
    ALREADY_EXISTS = "already_exists"
    BAD_PARAMS = "bad_params"
    ERROR = "error"


@dataclass
class Viewer:
    id: int
    name: str | None


@dataclass
class Movie:
    id: int
    name: str | None
    description: str | None
