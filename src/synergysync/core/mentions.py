"""提及解析 -- 从消息内容中的 @名称 解析出用户 ID

名称匹配不区分大小写，同一位置优先匹配最长的成员名称（支持含空格的名称）。
"""

from collections.abc import Iterable, Mapping


def _is_boundary(content: str, index: int) -> bool:
    return index >= len(content) or not (content[index].isalnum() or content[index] == "_")


def extract_mentions(content: str, directory: Mapping[str, str]) -> list[str]:
    """解析内容中的 @提及

    Args:
        content: 消息内容
        directory: 成员名称 -> 用户 ID

    Returns:
        按出现顺序去重的用户 ID 列表
    """
    if "@" not in content or not directory:
        return []

    # 名称按长度降序，保证最长匹配
    names = sorted(
        ((name.lower(), user_id) for name, user_id in directory.items() if name),
        key=lambda item: len(item[0]),
        reverse=True,
    )
    lowered = content.lower()
    found: list[str] = []
    index = lowered.find("@")
    while index != -1:
        start = index + 1
        for name, user_id in names:
            end = start + len(name)
            if lowered.startswith(name, start) and _is_boundary(content, end):
                found.append(user_id)
                break
        index = lowered.find("@", start)
    return list(dict.fromkeys(found))


def resolve_mentions(
    content: str,
    directory: Mapping[str, str],
    explicit: Iterable[str] = (),
) -> list[str]:
    """合并显式提及与内容中解析出的提及，保持顺序去重"""
    return list(dict.fromkeys([*explicit, *extract_mentions(content, directory)]))
