"""Locating named code units in possibly broken source text.

Example:
    >>> from exercise_verify.locator import CodeUnitLocator
    >>> CodeUnitLocator().locate("class A { x = '}'; }", "A").text
    " x = '}'; "

"""

from exercise_verify.locator.locator import CodeUnitLocator
from exercise_verify.locator.scanner import code_mask, find_block_end, iter_code

__all__ = [
    "CodeUnitLocator",
    "code_mask",
    "find_block_end",
    "iter_code",
]
