"""Runtime flag storage."""

from sqlmodel import Field, SQLModel


class Setting(SQLModel, table=True):
    """A named boolean flag toggled from the dashboard."""

    key: str = Field(primary_key=True)
    value: bool = False
