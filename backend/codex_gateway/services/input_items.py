import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import List, Optional, Sequence

from codex_gateway.providers.base import ChatMessage, ContentPart


async def create_input_item(text: str, images: Optional[Sequence[str]] = None) -> ChatMessage:
    """Build the user turn: the prompt followed by one data-URL part per image."""
    content: List[ContentPart] = [ContentPart(type="text", text=text)]
    for file_path in images or []:
        binary = await asyncio.to_thread(Path(file_path).read_bytes)
        mime, _ = mimetypes.guess_type(file_path)
        encoded = base64.b64encode(binary).decode("ascii")
        content.append(
            ContentPart(
                type="image_url",
                image_url={"url": f"data:{mime or 'application/octet-stream'};base64,{encoded}"},
            )
        )
    return ChatMessage(role="user", content=content)
