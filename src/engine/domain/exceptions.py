"""Custom exceptions for the rule evaluation engine."""


class EngineException(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        """
        Initialize engine exception.

        Args:
            message: Human-readable error message
            details: Optional dict with additional error context
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)


class RuleLoadError(EngineException):
    """Base exception for load-time fatal errors. The rule instance does not activate."""

    def __init__(self, rule_name: str, reason: str, details: dict | None = None):
        full_details = {"rule_name": rule_name, "reason": reason}
        if details:
            full_details.update(details)
        super().__init__(message=f"Rule '{rule_name}' failed to load: {reason}", details=full_details)
        self.rule_name = rule_name
        self.reason = reason


class InvalidRuleError(RuleLoadError):
    """Raised when a rule document is malformed or structurally inconsistent."""

    def __init__(self, rule_name: str, reason: str, validation_errors: list[str] | None = None):
        details = {}
        if validation_errors:
            details["validation_errors"] = validation_errors
        super().__init__(rule_name, reason, details)


class UndefinedVariableError(RuleLoadError):
    """Raised when a rule or an override references a variable that is not declared."""

    def __init__(self, rule_name: str, variable: str, referenced_by: str):
        super().__init__(
            rule_name,
            f"undefined variable '{variable}' referenced by {referenced_by}",
            {"variable": variable, "referenced_by": referenced_by},
        )


class UndefinedFieldError(RuleLoadError):
    """Raised when a rule references a field that is not declared."""

    def __init__(self, rule_name: str, field_name: str, referenced_by: str):
        super().__init__(
            rule_name,
            f"undefined field '{field_name}' referenced by {referenced_by}",
            {"field": field_name, "referenced_by": referenced_by},
        )


class VariableTypeError(RuleLoadError):
    """Raised when a variable default or override does not match its declared type."""

    def __init__(self, rule_name: str, variable: str, expected: str, value: object):
        super().__init__(
            rule_name,
            f"variable '{variable}' expects {expected}, got {type(value).__name__} {value!r}",
            {"variable": variable, "expected": expected, "value": repr(value)},
        )


class ResolutionError(EngineException):
    """Raised when a raw sample cannot be mapped to a field. Always recoverable."""

    def __init__(self, field_name: str, reason: str, value: object = None):
        super().__init__(
            message=f"Cannot resolve field '{field_name}': {reason}",
            details={"field": field_name, "value": repr(value)},
        )


class EvaluationError(EngineException):
    """Raised when a single (trigger, entity) tick fails. Isolated to that tick."""

    pass
