"""Fixed lookup table from platform to parser implementation."""

from types import MappingProxyType

from promptvault.models import Platform
from promptvault.parsers.chatgpt import ChatGPTParser
from promptvault.parsers.claude import ClaudeParser
from promptvault.parsers.cline import ClineParser
from promptvault.parsers.cursor import CursorParser
from promptvault.parsers.gemini import GeminiParser
from promptvault.parsers.generic import FileParser

PARSERS = MappingProxyType({
    Platform.CHATGPT: ChatGPTParser(),
    Platform.CLAUDE: ClaudeParser(),
    Platform.GEMINI: GeminiParser(),
    Platform.CLINE: ClineParser(),
    Platform.CURSOR: CursorParser(),
    Platform.FILE: FileParser(),
})
