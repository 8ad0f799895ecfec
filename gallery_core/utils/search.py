"""
@description 搜索工具函数
@responsibility 提供 n-gram 分词和全文检索查询构造，支持子串式模糊匹配
"""

import re

# 与搜索接口一致：这些字符在 FTS5 查询语法中有特殊含义
_QUERY_SPECIAL_CHARS = re.compile(r"[(){}\[\]/\\.\"*?!:^~+\-,]")
_WHITESPACE = re.compile(r"\s+")


def tokenize(text: str, min_gram: int = 1, max_gram: int = 2) -> str:
    """
    将文本拆分为 n-gram 序列

    Args:
        text: 待处理的文本
        min_gram: 最小 n-gram 长度
        max_gram: 最大 n-gram 长度

    Returns:
        空格分隔的 n-gram（按首次出现顺序去重），输入无效时返回空字符串

    Examples:
        >>> tokenize("AB")
        'a b ab'
    """
    if not isinstance(text, str):
        return ""

    # 转小写并移除所有空白
    sanitized = _WHITESPACE.sub("", text.lower())

    # dict 保留插入顺序，等价于有序集合
    grams: dict[str, None] = {}
    for n in range(min_gram, max_gram + 1):
        for i in range(len(sanitized) - n + 1):
            grams[sanitized[i : i + n]] = None

    return " ".join(grams)


def path_to_search_text(relative_path: str) -> str:
    """路径分隔符替换为空格，使每一级目录名成为独立的匹配单元"""
    return re.sub(r"[/\\]", " ", relative_path)


def build_match_query(query: str) -> str:
    """
    构造 FTS5 MATCH 表达式

    每个 gram 用双引号包裹，避免被解析为查询语法；清理后为空则返回空字符串
    """
    if not isinstance(query, str):
        return ""

    sanitized = _QUERY_SPECIAL_CHARS.sub(" ", query).strip()
    if not sanitized:
        return ""

    # unicode61 分词器会丢弃纯标点，这类 gram 无法命中
    grams = [g for g in tokenize(sanitized, 1, 2).split() if any(c.isalnum() for c in g)]
    return " ".join('"{}"'.format(g.replace('"', '""')) for g in grams)
