from re import match
from typing import Dict, List, Optional


def wrap(text: str, before: str = " ", after: str = " ") -> str:
    """Wrap string between before/after strings (default to spaces) if not empty.

    Examples:
        >>> wrap("foo", "(", ")")
        '(foo)'
        >>> wrap("")
        ''
    """
    return text if text == "" else before + text + after


def space_after(text: str) -> str:
    """Add space after string if not empty."""
    return wrap(text, before="")


def family_of(instance_type: str) -> str:
    """Extract the family name from an instance type.

    Examples:
        >>> family_of("m5.xlarge")
        'm5'
        >>> family_of("u-6tb1.metal")
        'u-6tb1'
    """
    return instance_type.split(".", 1)[0]


def family_letters(family_name: str) -> str:
    """Leading letters of an instance family, used to look up its category.

    Examples:
        >>> family_letters("m5")
        'm'
        >>> family_letters("inf2")
        'inf'
    """
    found = match(r"^[a-z]+", family_name)
    return found.group(0) if found else ""


def tags_to_dict(tags: Optional[List[dict]]) -> Dict[str, str]:
    """Convert the AWS list of Key/Value pairs to a dict.

    Examples:
        >>> tags_to_dict([{"Key": "Name", "Value": "web"}])
        {'Name': 'web'}
        >>> tags_to_dict(None)
        {}
    """
    return {t["Key"]: t["Value"] for t in (tags or [])}


def print_tags(tags: Optional[List[dict]]) -> str:
    """Render AWS tags in a compact, human-friendly form.

    Examples:
        >>> print_tags([{"Key": "Name", "Value": "web"}, {"Key": "env", "Value": "prod"}])
        'Name=web, env=prod'
    """
    return ", ".join(f"{k}={v}" for k, v in sorted(tags_to_dict(tags).items()))


def contains(haystack: Optional[str], needle: Optional[str]) -> bool:
    """Case-insensitive substring match, an empty needle matches everything.

    Examples:
        >>> contains("M5.large", "m5")
        True
        >>> contains(None, "m5")
        False
        >>> contains("c6g", "")
        True
    """
    if not needle:
        return True
    return haystack is not None and needle.lower() in haystack.lower()
