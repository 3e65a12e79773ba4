"""提示词模板解析。

纯函数，无 I/O：

- resolve: 用有序参数列表展开 system prompt 模板。
- find_placeholders / find_missing: 供配置界面做校验。
- validate_user_template / apply_user_template: 处理带 {message} 的用户消息模板。
"""

import re
from typing import Iterable, List, Mapping, Sequence, Tuple, Union

from chat_relay.domain.models import PromptArgument


MESSAGE_PLACEHOLDER = "{message}"

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

ArgumentLike = Union[PromptArgument, Mapping[str, str], Tuple[str, str]]


def _as_pair(arg: ArgumentLike) -> Tuple[str, str]:
    if isinstance(arg, PromptArgument):
        return arg.key, arg.value
    if isinstance(arg, Mapping):
        return arg.get("key", ""), arg.get("value", "")
    key, value = arg
    return key, value


def resolve(template: str, arguments: Sequence[ArgumentLike]) -> str:
    """按参数顺序替换 ``{key}`` 占位符。

    - key 去除首尾空白后为空的参数直接跳过。
    - 同名 key 只有第一次出现生效，后续重复项被忽略。
    - 替换是字面量替换，替换进来的文本中的占位符不会被再次展开。
    """

    pattern_parts: List[str] = []
    values = {}
    for arg in arguments:
        key, value = _as_pair(arg)
        key = (key or "").strip()
        if not key or key in values:
            continue
        values[key] = value or ""
        pattern_parts.append(re.escape(key))
    if not pattern_parts:
        return template
    # 单次扫描完成所有替换，避免已替换的值被后续 key 再次匹配
    pattern = re.compile(r"\{(" + "|".join(pattern_parts) + r")\}")
    return pattern.sub(lambda m: values[m.group(1)], template)


def find_placeholders(template: str) -> List[str]:
    """按出现顺序返回模板中去重后的占位符名。"""

    seen: List[str] = []
    for name in _PLACEHOLDER_RE.findall(template or ""):
        if name not in seen:
            seen.append(name)
    return seen


def find_missing(template: str, known_keys: Iterable[str]) -> List[str]:
    """返回模板中没有被任何参数绑定的占位符。"""

    known = {(k or "").strip() for k in known_keys}
    return [name for name in find_placeholders(template) if name not in known]


def validate_user_template(template: str) -> List[str]:
    """校验用户消息模板，返回问题列表（为空表示通过）。"""

    issues: List[str] = []
    if MESSAGE_PLACEHOLDER not in (template or ""):
        issues.append("User prompt template must contain the {message} placeholder.")
    return issues


def apply_user_template(template: str, message: str) -> str:
    """把用户输入填入模板中第一个 ``{message}``。"""

    return template.replace(MESSAGE_PLACEHOLDER, message, 1)
