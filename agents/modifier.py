from agents.base import CollaboratorAgent
from core.exceptions import CollaboratorParseError
from core.json_tools import extract_code
from core.types import ChangeRequest

MODIFIER_SYSTEM_PROMPT = """You are an expert React developer making targeted edits to existing files.
Change only what the request needs and keep everything else byte-for-byte identical.
Return exactly one fenced code block containing the complete updated file."""

MODIFY_PROMPT = """
Request: {message}

File: {filename}
{hints}
Current content:
```
{content}
```
"""


class ModifierAgent(CollaboratorAgent):
    name = "modifier"
    role = "modification"
    max_tokens = 8000
    temperature = 0.3

    async def modify(self, filename: str, content: str, request: ChangeRequest, hints: str = "") -> str:
        """Return the full updated content of *filename*."""
        user_prompt = MODIFY_PROMPT.format(
            message=request.message,
            filename=filename,
            hints=f"What to change: {hints}\n" if hints else "",
            content=content,
        )
        raw = await self.ask(MODIFIER_SYSTEM_PROMPT, user_prompt)
        updated = extract_code(raw)
        if not updated.strip():
            raise CollaboratorParseError(f"modifier returned no code for {filename}", role=self.role, raw=raw)
        return updated
