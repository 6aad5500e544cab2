from __future__ import annotations

CHAPTER_PROMPT_VERSION = "v1"
CATALOG_PROMPT_VERSION = "v1"

CATEGORY_NAMES_CN = {
    "Urban": "都市",
    "Historical": "历史",
    "Fantasy": "玄幻",
    "Other": "其他",
}

_NOVEL_ITEM_SCHEMA = (
    "[\n"
    "  {\n"
    '    "id": "string",\n'
    '    "title": "string",\n'
    '    "author": "string",\n'
    '    "category": "Urban|Historical|Fantasy|Other",\n'
    '    "description": "string",\n'
    '    "status": "Ongoing|Completed",\n'
    '    "rating": 0-10,\n'
    '    "tags": ["string"]\n'
    "  }\n"
    "]\n"
)


def chapter_prompts(
    *,
    work_title: str,
    chapter_index: int,
    language: str,
    style: str,
    target_chars: int,
) -> tuple[str, str]:
    system = (
        "你是一位经验丰富的中文网络小说作者。"
        "只输出正文，不要输出 JSON，不要输出任何解释。"
    )

    chapter_number = chapter_index + 1
    user = (
        f"请为中文小说《{work_title}》撰写第 {chapter_number} 章的正文。\n"
        f"语言：{language}\n"
        f"风格：{style}\n"
        f"篇幅：约 {target_chars} 个汉字。\n"
        "格式：只返回带段落换行的纯文本。\n"
        f"第一行写章节标题（第{chapter_number}章 标题），从第二行开始写正文。\n"
    )
    return system, user


def search_prompts(*, query: str, language: str, min_results: int, max_results: int) -> tuple[str, str]:
    system = "你是一个中文网络小说检索助手。只输出严格有效的 JSON 数组，不要输出 markdown。"

    user = (
        f"请检索与关键词“{query}”匹配的中文网络小说，返回 {min_results}-{max_results} 部不同作品。\n"
        "如果没有指定类型，优先考虑都市（Urban）和历史（Historical）题材。\n"
        f"title、author、description、tags 字段请全部使用{language}。\n"
        "输出 JSON schema：\n"
        f"{_NOVEL_ITEM_SCHEMA}"
    )
    return system, user


def rankings_prompts(*, category: str, language: str, limit: int) -> tuple[str, str]:
    system = "你是一个中文网络小说榜单编辑。只输出严格有效的 JSON 数组，不要输出 markdown。"

    category_cn = CATEGORY_NAMES_CN.get(category, category)
    user = (
        f"请列出{category_cn}（{category}）类型最受欢迎的 {limit} 部中文网络小说。\n"
        "优先选择国内读者熟知的高质量、经典或正在流行的作品。\n"
        f"所有文本字段请使用{language}。\n"
        "输出 JSON schema：\n"
        f"{_NOVEL_ITEM_SCHEMA}"
    )
    return system, user
