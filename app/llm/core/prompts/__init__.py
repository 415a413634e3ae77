"""
提示词模板

对话续写指令、搜索增强模板与标题生成提示词。
"""

from typing import List

CONTINUATION_INSTRUCTION = (
    "Continue your previous response exactly where it left off. "
    "Do not repeat any content that has already been written, do not restart the answer, "
    "and do not add ellipses, markers or commentary about continuing."
)

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that generates concise, descriptive titles for conversations. "
    "Always respond with just the title, no quotes or extra formatting. Keep titles under 60 characters."
)

TITLE_PROMPT_WITH_REPLY = """Based on this conversation, generate a short, descriptive title (max 60 characters):

User: {user_message}
Assistant: {assistant_message}

Generate a concise, descriptive title that captures the main topic or question. Respond with only the title, no quotes or extra text."""

TITLE_PROMPT_FIRST_MESSAGE = """Generate a short, descriptive title (max 60 characters) for a conversation that starts with:

"{user_message}"

Generate a concise, descriptive title that captures the main topic or question. Respond with only the title, no quotes or extra text."""

SEARCH_CONTEXT_TEMPLATE = """Based on the following web search results, please answer the user's question. Cite sources using [n] where relevant.

Search query: {query}

{results}

User question: {question}"""


def format_search_results(results: List[dict], max_snippet_length: int = 500) -> str:
    lines = []
    for index, result in enumerate(results, start=1):
        snippet = (result.get("content") or result.get("snippet") or "")[:max_snippet_length]
        lines.append(f"[{index}] {result.get('title', '')}\nURL: {result.get('url', '')}\n{snippet}")
    return "\n\n".join(lines)
