from pydantic import BaseModel, ConfigDict
from typing import Any


class ChatFrame(BaseModel):
    """Shape check for inbound socket frames. The raw text is what gets relayed.

    Only `type` is checked; `text` and `encrypted` belong to the clients.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    text: Any = None
    encrypted: Any = None
