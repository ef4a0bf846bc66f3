from dataclasses import dataclass


@dataclass(frozen=True)
class Notice:
    """A dismissable, user-visible notification."""

    title: str
    description: str = ""
    destructive: bool = False
