"""Unit tests validating the in-process interpreter behaviour end to end."""

from backend.pysim.interpreter import Interpreter, interpret_python


def test_hello_world():
    assert interpret_python("print('Hello, World!')") == "Hello, World!"


def test_assignment_and_print():
    it = Interpreter()
    assert it.run("x = 5\nprint(x)") == "5"


def test_for_over_range():
    code = "for i in range(1,4):\n    print(i)"
    assert interpret_python(code) == "1\n2\n3"


def test_if_else_takes_else_branch():
    code = 'if 1 > 2:\n    print("a")\nelse:\n    print("b")'
    assert interpret_python(code) == "b"


def test_untranslatable_rhs_is_stored_as_text():
    it = Interpreter()
    res = it.execute("x = 3 plus 4\nprint(x)")
    assert res["errors"] is None
    assert res["output"] == "3 plus 4"
    assert res["variables"]["x"] == {"type": "string", "value": "3 plus 4"}


def test_literal_prints():
    code = (
        'print("hi")\n'
        "print(42)\n"
        "print(3.5)\n"
        "print(True)\n"
        "print(None)\n"
    )
    assert interpret_python(code) == "hi\n42\n3.5\nTrue\nNone"


def test_fstring_interpolation():
    it = Interpreter()
    assert it.run('x = 5\nprint(f"{x}")') == "5"
    assert it.run('name = "Ada"\nprint(f"Hello, {name}!")') == "Hello, Ada!"


def test_multi_argument_print_joins_with_space():
    assert interpret_python('print(1, "x", 2)') == "1 x 2"


def test_nested_parentheses_are_not_split():
    assert interpret_python("print(min(1,2), 3)") == "1 3"


def test_empty_print_emits_blank_line():
    assert interpret_python('print("a")\nprint()\nprint("b")') == "a\n\nb"


def test_arithmetic_and_lists():
    code = (
        "a = 2 + 3 * 4\n"
        "nums = [1, 2, 3]\n"
        'names = ["x", "y"]\n'
        "print(a)\n"
        "print(nums)\n"
        "print(names)\n"
        "print(len(nums), sum(nums))\n"
    )
    assert interpret_python(code) == "14\n[1, 2, 3]\n['x', 'y']\n3 6"


def test_comments_and_blank_lines_are_ignored():
    code = (
        "# setup\n"
        "x = 5  # five\n"
        "\n"
        "print(x)  # show it\n"
        'print("# not a comment")\n'
    )
    assert interpret_python(code) == "5\n# not a comment"


def test_while_loop_counts():
    code = "i = 0\nwhile i < 3:\n    print(i)\n    i = i + 1"
    assert interpret_python(code) == "0\n1\n2"


def test_function_definition_and_call():
    code = (
        "def greet(name):\n"
        '    print(f"Hello, {name}!")\n'
        "\n"
        'greet("Ada")\n'
        'greet("Linus")\n'
    )
    assert interpret_python(code) == "Hello, Ada!\nHello, Linus!"


def test_variables_are_reported_with_tags():
    it = Interpreter()
    res = it.execute('x = 5\ny = "a"\nok = x > 1\nitems = [1]\ndef f():\n    print(1)\n')
    assert res["errors"] is None
    assert res["variables"] == {
        "x": {"type": "number", "value": "5"},
        "y": {"type": "string", "value": "a"},
        "ok": {"type": "boolean", "value": "True"},
        "items": {"type": "list", "value": "[1]"},
        "f": {"type": "function", "value": "<function f>"},
    }


def test_runs_do_not_share_state():
    it = Interpreter()
    assert it.run("x = 1\ndef f():\n    print(1)") == ""
    # `x` is unknown in the second run, so it degrades to its own text
    assert it.run("print(x)\nf()") == "x"
