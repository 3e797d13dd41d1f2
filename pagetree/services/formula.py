"""
Langage de formules des propriétés calculées.

    prop("Prix") * prop("Quantité")
    if(prop("Fait"), "ok", concat("reste ", length(prop("Tags"))))

Les références sont toujours ``prop("Nom")`` avec un littéral, pour qu'on
puisse connaître les dépendances d'une formule sans l'évaluer.
"""

import re
from typing import Any, Callable, List, Optional, Set, Tuple


class FormulaError(ValueError):
    pass


_TOKEN_RE = re.compile(r"""
    \s*(?:
        (?P<number>\d+(?:\.\d+)?)
      | (?P<string>"(?:[^"\\]|\\.)*")
      | (?P<name>[A-Za-z_][A-Za-z_0-9]*)
      | (?P<op>==|!=|<=|>=|[-+*/%<>(),])
    )""", re.VERBOSE)

KEYWORDS = {"and", "or", "not", "true", "false"}
# évaluation paresseuse des arguments
SPECIAL_FORMS = {"if"}


def tokenize(expression: str) -> List[Tuple[str, str]]:
    tokens = []
    position = 0
    expression = expression.rstrip()
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if not match or match.end() == position:
            raise FormulaError(f"Unexpected character at position {position}")
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "string":
            value = re.sub(r"\\(.)", r"\1", value[1:-1])
        tokens.append((kind, value))
        position = match.end()
    return tokens


# ---- AST: tuples (kind, ...) ----

class _Parser:
    def __init__(self, tokens):
        self.tokens = tokens
        self.index = 0

    def peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def take(self) -> Tuple[str, str]:
        token = self.peek()
        if token is None:
            raise FormulaError("Unexpected end of formula")
        self.index += 1
        return token

    def accept(self, kind: str, value: Optional[str] = None) -> bool:
        token = self.peek()
        if token and token[0] == kind and (value is None or token[1] == value):
            self.index += 1
            return True
        return False

    def expect(self, kind: str, value: str) -> None:
        if not self.accept(kind, value):
            raise FormulaError(f"Expected '{value}'")

    def parse(self):
        node = self.parse_or()
        if self.peek() is not None:
            raise FormulaError(f"Unexpected token '{self.peek()[1]}'")
        return node

    def parse_or(self):
        node = self.parse_and()
        while self.accept("name", "or"):
            node = ("or", node, self.parse_and())
        return node

    def parse_and(self):
        node = self.parse_not()
        while self.accept("name", "and"):
            node = ("and", node, self.parse_not())
        return node

    def parse_not(self):
        if self.accept("name", "not"):
            return ("not", self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self):
        node = self.parse_additive()
        token = self.peek()
        if token and token[0] == "op" and token[1] in ("==", "!=", "<", "<=", ">", ">="):
            self.index += 1
            node = ("binary", token[1], node, self.parse_additive())
        return node

    def parse_additive(self):
        node = self.parse_multiplicative()
        while True:
            token = self.peek()
            if token and token[0] == "op" and token[1] in ("+", "-"):
                self.index += 1
                node = ("binary", token[1], node, self.parse_multiplicative())
            else:
                return node

    def parse_multiplicative(self):
        node = self.parse_unary()
        while True:
            token = self.peek()
            if token and token[0] == "op" and token[1] in ("*", "/", "%"):
                self.index += 1
                node = ("binary", token[1], node, self.parse_unary())
            else:
                return node

    def parse_unary(self):
        if self.accept("op", "-"):
            return ("neg", self.parse_unary())
        return self.parse_primary()

    def parse_primary(self):
        kind, value = self.take()
        if kind == "number":
            return ("literal", float(value) if "." in value else int(value))
        if kind == "string":
            return ("literal", value)
        if kind == "op" and value == "(":
            node = self.parse_or()
            self.expect("op", ")")
            return node
        if kind == "name":
            if value == "true":
                return ("literal", True)
            if value == "false":
                return ("literal", False)
            if value in KEYWORDS:
                raise FormulaError(f"Unexpected keyword '{value}'")
            return self.parse_call(value)
        raise FormulaError(f"Unexpected token '{value}'")

    def parse_call(self, name: str):
        self.expect("op", "(")
        args = []
        if not self.accept("op", ")"):
            args.append(self.parse_or())
            while self.accept("op", ","):
                args.append(self.parse_or())
            self.expect("op", ")")

        if name == "prop":
            if len(args) != 1 or args[0][0] != "literal" or not isinstance(args[0][1], str):
                raise FormulaError('prop() takes a single property name, e.g. prop("Name")')
            return ("prop", args[0][1])
        if name not in FUNCTIONS and name not in SPECIAL_FORMS:
            raise FormulaError(f"Unknown function '{name}'")
        return ("call", name, args)


# ---- évaluation ----

def _number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormulaError(f"Expected a number, got {type(value).__name__}")
    return value


def _round(value, digits=0):
    return round(_number(value), int(_number(digits)))


def _length(value):
    if value is None:
        return 0
    if isinstance(value, (str, list)):
        return len(value)
    raise FormulaError("length() expects text or a list")


def _empty(value):
    return value is None or value == "" or value == [] or value is False


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ", ".join(_text(item) for item in value)
    return str(value)


FUNCTIONS = {
    "concat": lambda *args: "".join(_text(arg) for arg in args),
    "length": _length,
    "round": _round,
    "abs": lambda value: abs(_number(value)),
    "min": lambda *args: min(_number(arg) for arg in args),
    "max": lambda *args: max(_number(arg) for arg in args),
    "empty": _empty,
    "lower": lambda value: _text(value).lower(),
    "upper": lambda value: _text(value).upper(),
}


def _binary(op: str, left, right):
    if op == "+":
        if isinstance(left, str) or isinstance(right, str):
            return _text(left) + _text(right)
        return _number(left) + _number(right)
    if op == "-":
        return _number(left) - _number(right)
    if op == "*":
        return _number(left) * _number(right)
    if op in ("/", "%"):
        if _number(right) == 0:
            raise FormulaError("Division by zero")
        return _number(left) / right if op == "/" else _number(left) % right
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right
    except TypeError:
        raise FormulaError(f"Cannot compare {type(left).__name__} and {type(right).__name__}")


class Formula:
    def __init__(self, expression: str):
        self.expression = expression
        self.tree = _Parser(tokenize(expression)).parse()

    @property
    def references(self) -> Set[str]:
        names = set()
        stack = [self.tree]
        while stack:
            node = stack.pop()
            if node[0] == "prop":
                names.add(node[1])
            elif node[0] == "call":
                stack.extend(node[2])
            elif node[0] == "binary":
                stack.extend(node[2:])
            elif node[0] in ("and", "or"):
                stack.extend(node[1:])
            elif node[0] in ("not", "neg"):
                stack.append(node[1])
        return names

    def evaluate(self, resolve: Callable[[str], Any]) -> Any:
        """resolve(nom) retourne la valeur de la propriété sur la ligne courante"""
        return self._eval(self.tree, resolve)

    def _eval(self, node, resolve):
        kind = node[0]
        if kind == "literal":
            return node[1]
        if kind == "prop":
            return resolve(node[1])
        if kind == "neg":
            return -_number(self._eval(node[1], resolve))
        if kind == "not":
            return not self._eval(node[1], resolve)
        if kind == "and":
            return bool(self._eval(node[1], resolve)) and bool(self._eval(node[2], resolve))
        if kind == "or":
            return bool(self._eval(node[1], resolve)) or bool(self._eval(node[2], resolve))
        if kind == "binary":
            return _binary(node[1], self._eval(node[2], resolve), self._eval(node[3], resolve))
        # call
        name, args = node[1], node[2]
        if name == "if":
            if len(args) != 3:
                raise FormulaError("if() takes 3 arguments")
            branch = args[1] if self._eval(args[0], resolve) else args[2]
            return self._eval(branch, resolve)
        values = [self._eval(arg, resolve) for arg in args]
        try:
            return FUNCTIONS[name](*values)
        except FormulaError:
            raise
        except (TypeError, ValueError):
            raise FormulaError(f"Invalid arguments for {name}()")


def parse_formula(expression: str) -> Formula:
    if not isinstance(expression, str) or not expression.strip():
        raise FormulaError("Formula expression is empty")
    return Formula(expression)
