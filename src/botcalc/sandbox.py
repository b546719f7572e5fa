"""Execution sandbox: run formula source against a receiver and a library.

The sandbox is the error boundary between user-authored formulas and the
host. ``Sandbox.run`` converts every error raised while parsing or
evaluating a formula into a failed ``SandboxResult``.
"""

import logging
import re
from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from .interpreter import Energy, Interpreter

logger = logging.getLogger(__name__)

_CURLY_SINGLE_QUOTES = re.compile("[‘’]")
_CURLY_DOUBLE_QUOTES = re.compile("[“”]")


class Evaluator(Protocol):
    """Evaluates formula source with ``this`` bound to ``receiver``."""

    def evaluate(
        self,
        source: str,
        receiver: Any,
        library: Mapping[str, Any],
        energy: Energy | None = None,
    ) -> Any: ...


class SandboxResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    result: Any = None
    error: BaseException | None = None


def replace_macros(formula: str) -> str:
    """Strip the ``:=``/``=`` prefix and straighten curly quotes."""
    if formula.startswith(":="):
        formula = formula[2:]
    elif formula.startswith("="):
        formula = formula[1:]
    formula = _CURLY_SINGLE_QUOTES.sub("'", formula)
    return _CURLY_DOUBLE_QUOTES.sub('"', formula)


class Sandbox:
    """Runs formulas through a pluggable evaluator."""

    def __init__(self, evaluator: Evaluator | None = None):
        self.evaluator = evaluator or Interpreter()

    def run(
        self,
        source: str,
        receiver: Any,
        library: Mapping[str, Any],
        energy: Energy | None = None,
    ) -> SandboxResult:
        script = replace_macros(source)
        try:
            result = self.evaluator.evaluate(script, receiver, library, energy)
        except Exception as err:  # noqa: BLE001 - formula errors are results
            logger.debug("formula %r failed: %s", source, err)
            return SandboxResult(success=False, error=err)
        return SandboxResult(success=True, result=result)
