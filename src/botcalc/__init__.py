"""botcalc: reactive formula runtime for bots.

Bots hold tags whose raw values are literals or formulas. The runtime keeps a
precalculated value for every tag and, when bots are added, removed or
updated, recomputes only the tags that could have been affected.

Example:
    from botcalc import BotRuntime, create_bot

    runtime = BotRuntime()
    runtime.apply_added([create_bot("a", {"formula": '=getBots("#name", "bob").length'})])
    update = runtime.apply_added([create_bot("b", {"name": "bob"})])
    update.state["a"]  # {"values": {"formula": 1}}
"""

__version__ = "0.1.0"

from .bot import (
    Assignment,
    Bot,
    PrecalculatedBot,
    StateUpdate,
    UpdatedBot,
    create_bot,
    create_precalculated_bot,
)
from .config import ConfigError, RuntimeConfig, load_config
from .context import BotView, CalculationContext, FormulaRecursionError
from .dependencies import (
    AllSelector,
    BotTagSelector,
    DependencyRecorder,
    DependencyTracker,
    TagSelector,
    TagValueSelector,
)
from .filters import (
    FilterParseResult,
    TagFilter,
    TagValidation,
    filters_matching_arguments,
    is_filter_tag,
    parse_filter_tag,
    tag_matches_filter,
    tags_matching_filter,
    validate_tag,
)
from .interpreter import FormulaError, Interpreter, RanOutOfEnergyError
from .library import LibraryFunction, create_library
from .parser import FormulaSyntaxError, Lexer, Parser, parse
from .precalculation import PrecalculationError, PrecalculationManager
from .runtime import BotRuntime
from .sandbox import Evaluator, Sandbox, SandboxResult
from .store import MemoryBotStore
from .values import (
    calculate_bot_value,
    calculate_copiable_value,
    calculate_formatted_bot_value,
    calculate_value,
    format_value,
    is_assignment,
    is_formula,
    parse_literal,
    prepare_tag_updates,
)

__all__ = [
    # Data model
    "Assignment",
    "Bot",
    "PrecalculatedBot",
    "StateUpdate",
    "UpdatedBot",
    "create_bot",
    "create_precalculated_bot",
    # Literals
    "calculate_bot_value",
    "calculate_copiable_value",
    "calculate_formatted_bot_value",
    "calculate_value",
    "format_value",
    "is_assignment",
    "is_formula",
    "parse_literal",
    "prepare_tag_updates",
    # Filter tags
    "FilterParseResult",
    "TagFilter",
    "TagValidation",
    "filters_matching_arguments",
    "is_filter_tag",
    "parse_filter_tag",
    "tag_matches_filter",
    "tags_matching_filter",
    "validate_tag",
    # Formulas
    "parse",
    "Lexer",
    "Parser",
    "FormulaSyntaxError",
    "Interpreter",
    "FormulaError",
    "RanOutOfEnergyError",
    "Evaluator",
    "Sandbox",
    "SandboxResult",
    # Context
    "BotView",
    "CalculationContext",
    "FormulaRecursionError",
    "LibraryFunction",
    "create_library",
    # Dependencies
    "AllSelector",
    "TagSelector",
    "TagValueSelector",
    "BotTagSelector",
    "DependencyRecorder",
    "DependencyTracker",
    # Precalculation
    "PrecalculationManager",
    "PrecalculationError",
    "MemoryBotStore",
    "BotRuntime",
    # Config
    "RuntimeConfig",
    "ConfigError",
    "load_config",
]
