"""Default patterns and fix templates a fresh knowledge store starts with."""

from ..models import ErrorType, FixTemplate, MatchRule, Pattern

DEFAULT_PATTERNS = [
    # JavaScript code nodes
    Pattern(
        id="js_undefined_var",
        name="Undefined variable",
        error_type=ErrorType.JAVASCRIPT_ERROR,
        match_rule=MatchRule(message_pattern=r"(\w+) is not defined"),
        description="A variable is referenced before it is declared",
        common_causes=[
            "Typo in variable name",
            "Variable declared in another scope",
            "Missing $input/$json accessor",
        ],
        quick_fix_hint="Declare the variable or read it from $input.all()",
        confidence=0.9,
    ),
    Pattern(
        id="js_null_reference",
        name="Null reference",
        error_type=ErrorType.JAVASCRIPT_ERROR,
        match_rule=MatchRule(message_pattern=r"Cannot read propert(y|ies).*of (null|undefined)"),
        description="A property is read from null or undefined",
        common_causes=[
            "Input item has no json payload",
            "Upstream node returned an empty result",
            "Nested field is optional",
        ],
        quick_fix_hint="Guard the access with optional chaining and defaults",
        confidence=0.85,
    ),
    Pattern(
        id="js_syntax_error",
        name="JavaScript syntax error",
        error_type=ErrorType.SYNTAX_ERROR,
        match_rule=MatchRule(message_pattern=r"SyntaxError|Unexpected (token|end of input)"),
        description="Code node source does not parse",
        common_causes=["Unbalanced brackets", "Missing comma or semicolon", "Stray character"],
        quick_fix_hint="Rewrite the code node with balanced delimiters",
        confidence=0.8,
    ),
    Pattern(
        id="py_none_attribute",
        name="Attribute on None",
        error_type=ErrorType.PYTHON_ERROR,
        match_rule=MatchRule(message_pattern=r"'NoneType' object has no attribute"),
        description="An attribute is read from None in a Python code node",
        common_causes=["Input item has no json payload", "Optional field missing"],
        quick_fix_hint="Default missing values before attribute access",
        confidence=0.85,
    ),
    Pattern(
        id="py_key_error",
        name="Missing key",
        error_type=ErrorType.PYTHON_ERROR,
        match_rule=MatchRule(message_pattern=r"KeyError"),
        description="A dictionary key is missing in a Python code node",
        common_causes=["Upstream schema changed", "Optional field missing"],
        quick_fix_hint="Use dict.get with a default",
        confidence=0.75,
    ),
    # Configuration
    Pattern(
        id="config_invalid_url",
        name="Invalid URL",
        error_type=ErrorType.CONFIG_ERROR,
        match_rule=MatchRule(message_pattern=r"(invalid|missing) (url|endpoint)"),
        description="An HTTP node has no usable URL",
        common_causes=["URL parameter left empty", "Expression did not resolve"],
        quick_fix_hint="Set a fully qualified http(s) URL",
        confidence=0.8,
    ),
    # API calls
    Pattern(
        id="api_timeout",
        name="API timeout",
        error_type=ErrorType.API_ERROR,
        match_rule=MatchRule(message_pattern=r"timeout|ETIMEDOUT|ECONNRESET"),
        description="A remote API did not answer in time",
        common_causes=["Remote service slow or down", "Timeout set too low"],
        quick_fix_hint="Raise the node timeout and enable retries",
        confidence=0.7,
    ),
    Pattern(
        id="api_401",
        name="Unauthorized",
        error_type=ErrorType.API_ERROR,
        match_rule=MatchRule(message_pattern=r"\b401\b|unauthori[sz]ed"),
        description="API credentials were rejected",
        common_causes=["Expired token", "Wrong credential attached to node"],
        quick_fix_hint="Refresh the node credentials",
        confidence=0.9,
    ),
    # Data
    Pattern(
        id="invalid_json",
        name="Invalid JSON data",
        error_type=ErrorType.DATA_ERROR,
        match_rule=MatchRule(message_pattern=r"Unexpected token .* in JSON|invalid json|JSON\.parse"),
        description="A payload could not be parsed as JSON",
        common_causes=["Upstream returned HTML or text", "Truncated payload"],
        quick_fix_hint="Wrap JSON.parse in try/catch and validate input",
        confidence=0.8,
    ),
]


DEFAULT_TEMPLATES = [
    FixTemplate(
        id="null_safety",
        name="Null safety",
        description="Default missing input payloads and guard nested access",
        applicable_error_types=["js_null_reference", "js_undefined_var", "javascript_error"],
        node_types=["code"],
        confidence=0.9,
        code="""// Null-safe processing for node {{nodeId}}
const items = $input.all();
return items.map((item) => {
  const data = (item && item.json) ? item.json : {};
  return { json: { ...data } };
});
""",
    ),
    FixTemplate(
        id="error_handling",
        name="Error handling",
        description="Wrap node logic in try/catch and return the error as data",
        applicable_error_types=["javascript_error", "syntax_error", "invalid_json"],
        node_types=["code"],
        confidence=0.8,
        code="""// Guarded processing for node {{nodeId}} in workflow {{workflowId}}
try {
  const items = $input.all();
  return items.map((item) => ({ json: { ...(item.json || {}) } }));
} catch (error) {
  return [{ json: { error: error.message, previousError: '{{errorMessage}}' } }];
}
""",
    ),
    FixTemplate(
        id="python_none_guard",
        name="Python None guard",
        description="Default missing payloads and use dict.get for lookups",
        applicable_error_types=["py_none_attribute", "py_key_error", "python_error"],
        node_types=["code"],
        confidence=0.85,
        language="python",
        code="""# None-safe processing for node {{nodeId}}
results = []
for item in _input.all():
    data = item.json or {}
    results.append({"json": dict(data)})
return results
""",
    ),
]
