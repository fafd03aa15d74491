"""Evaluating isolated bundle fragments inside an embedded V8 isolate.

A fragment is an expression cut out of the minified bundle. It usually refers
to identifiers defined elsewhere in the bundle (enums, sprite tables, helper
functions). Those identifiers are either bound to real values by the caller or
answered by a placeholder whose every property reads back as the property name,
so `Rarity.Common` evaluates to "Common" without the rest of the bundle.
"""

import dataclasses
import json
from typing import Any

from loguru import logger
from py_mini_racer import JSEvalException, JSParseException, JSTimeoutException, MiniRacer

from mg_api.errors import EvaluationError, InvalidShapeError

SAFE_GLOBALS = (
    "Date",
    "Math",
    "Number",
    "String",
    "Boolean",
    "Object",
    "Array",
    "RegExp",
    "JSON",
)

DEFAULT_TIMEOUT = 2.5


@dataclasses.dataclass(frozen=True)
class RealValue:
    value: Any


@dataclasses.dataclass(frozen=True)
class Placeholder:
    name: str


Binding = RealValue | Placeholder

_PRELUDE = """(function () {
  var real = %s;
  var placeholders = %s;
  var synthesized = [];
  function placeholder() {
    return new Proxy({}, {
      get: function (t, p) { return typeof p === "symbol" ? undefined : String(p); }
    });
  }
  var scope = Object.create(null);
  [%s].forEach(function (pair) { scope[pair[0]] = pair[1]; });
  scope.undefined = undefined;
  scope.NaN = NaN;
  scope.Infinity = Infinity;
  Object.keys(real).forEach(function (k) { scope[k] = real[k]; });
  placeholders.forEach(function (k) { scope[k] = placeholder(); });
  var env = new Proxy(scope, {
    has: function (t, p) { return typeof p !== "symbol"; },
    get: function (t, p) {
      if (typeof p === "symbol") return undefined;
      if (!(p in t)) {
        t[p] = placeholder();
        synthesized.push(p);
      }
      return t[p];
    }
  });
  var value = (function () { with (env) { return ("""

_EPILOGUE = """
); } })();
  var kind = value === null ? "null" : Array.isArray(value) ? "array" : typeof value;
  return JSON.stringify({kind: kind, value: value === undefined ? null : value, synthesized: synthesized});
})()"""

_UNSERIALIZABLE = ("function", "symbol")


class Sandbox:
    """Identifier bindings for evaluating one fragment.

    Args:
        bindings: Initial bindings, either Binding instances or plain values
        timeout: Wall-clock limit per evaluation in seconds
    """

    def __init__(self, bindings: dict[str, Any] | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self._bindings: dict[str, Binding] = {}
        for name, value in (bindings or {}).items():
            self.bind(name, value)

    def bind(self, name: str, value: Any):
        if not isinstance(value, (RealValue, Placeholder)):
            value = RealValue(value)
        self._bindings[name] = value

    def bind_placeholder(self, name: str):
        self._bindings[name] = Placeholder(name)

    def resolve(self, name: str) -> Binding | None:
        """Look up a binding, creating a placeholder for unknown identifiers.

        Safe globals are provided by the isolate itself and resolve to None.
        """
        if name in SAFE_GLOBALS:
            return None
        if name not in self._bindings:
            self._bindings[name] = Placeholder(name)
        return self._bindings[name]

    @property
    def bindings(self) -> dict[str, Binding]:
        return dict(self._bindings)

    def _program(self, source: str) -> str:
        real = {
            name: b.value for name, b in self._bindings.items() if isinstance(b, RealValue)
        }
        placeholders = [
            name for name, b in self._bindings.items() if isinstance(b, Placeholder)
        ]
        builtins = ", ".join(f'["{name}", {name}]' for name in SAFE_GLOBALS)
        # Concatenated rather than formatted: the fragment itself is full of "%" and braces
        return (
            _PRELUDE % (json.dumps(real), json.dumps(placeholders), builtins)
            + source
            + _EPILOGUE
        )

    def evaluate(self, source: str) -> Any:
        """Evaluate a JavaScript expression and return its value as plain Python data.

        Args:
            source: Expression text, evaluated as if wrapped in parentheses

        Returns:
            The JSON-converted result. undefined becomes None.

        Raises:
            EvaluationError: On syntax errors, runtime errors, timeouts and
                results that cannot cross into Python
        """
        ctx = MiniRacer()
        try:
            raw = ctx.eval(self._program(source), timeout=int(self.timeout * 1000))
        except JSTimeoutException as e:
            raise EvaluationError(f"Evaluation timed out after {self.timeout}s") from e
        except JSParseException as e:
            raise EvaluationError(f"Syntax error in fragment: {e}") from e
        except JSEvalException as e:
            raise EvaluationError(f"Fragment raised: {e}") from e
        finally:
            ctx.close()

        result = json.loads(raw)
        for name in result["synthesized"]:
            self._bindings.setdefault(name, Placeholder(name))
        if result["kind"] in _UNSERIALIZABLE:
            raise EvaluationError(f"Fragment evaluated to a {result['kind']}")
        if result["synthesized"]:
            logger.debug("Synthesized placeholders", names=result["synthesized"])
        return result["value"]


def run_object_literal(literal: str, sandbox: Sandbox, what: str = "object literal") -> dict:
    """Evaluate an object literal and require a plain object back."""
    value = sandbox.evaluate(literal)
    if not isinstance(value, dict):
        raise InvalidShapeError(what, type(value).__name__ if value is not None else "null")
    return value
