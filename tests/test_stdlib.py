from mlang import Array, Boolean, Error, Interpreter, Number, String, eval_source


def library(*modules: str) -> Interpreter:
    interpreter = Interpreter()
    source = " ".join(f'use "stdlib/{module}.m"' for module in modules)
    result = eval_source(source, interpreter)
    assert not isinstance(result, Error), str(result)
    return interpreter


def numbers(*values: float) -> Array:
    return Array([Number(v) for v in values])


def assert_value(interpreter: Interpreter, source: str, expected):
    result = eval_source(source, interpreter)
    assert not isinstance(result, Error), f"{source}: {result}"
    assert result == expected, f"{source}: {result}"


def test_math_functions():
    math = library("math")
    assert_value(math, "abs(-3)", Number(3))
    assert_value(math, "abs(4)", Number(4))
    assert_value(math, "max(2, 9)", Number(9))
    assert_value(math, "min(2, 9)", Number(2))
    assert_value(math, "pow(2, 10)", Number(1024))
    assert_value(math, "pow(5, 0)", Number(1))
    assert_value(math, "factorial(0)", Number(1))
    assert_value(math, "factorial(6)", Number(720))
    assert_value(math, "is_even(4)", Boolean(True))
    assert_value(math, "is_even(-3)", Boolean(False))
    assert_value(math, "is_odd(-3)", Boolean(True))
    assert_value(math, "is_odd(2.5)", Boolean(True))
    assert_value(math, "is_odd(4)", Boolean(False))


def test_math_transformers_rebind():
    math = library("math")
    assert_value(math, "x = 3 x.square() x", Number(9))
    assert_value(math, "x = 2 x.cube() x", Number(8))
    assert_value(math, "x = 5 x.negate() x", Number(-5))
    assert_value(math, "x = 5 x.increment() x.increment() x", Number(7))
    assert_value(math, "x = 5 x.decrement() x", Number(4))


def test_math_sqrt():
    math = library("math")
    assert_value(math, "x = 16 x.sqrt()", Number(4))
    assert_value(math, "x = 0 x.sqrt()", Number(0))
    assert_value(math, "x = -4 x.sqrt()", Number(0))
    result = eval_source("x = 2 x.sqrt()", math)
    assert isinstance(result, Number)
    assert abs(result.data - 2**0.5) < 1e-12


def test_string_helpers():
    strings = library("string")
    assert_value(strings, 'concat("ab", "cd")', String("abcd"))
    assert_value(strings, 'repeat("ab", 3)', String("ababab"))
    assert_value(strings, 'repeat("ab", 0)', String(""))
    assert_value(strings, 's = "hello" s.length()', Number(5))
    assert_value(strings, "xs = [1, 2, 3] xs.length()", Number(3))
    assert_value(strings, 's = "abc" s.reverse_string()', String("cba"))


def test_array_functions():
    arrays = library("array")
    assert_value(arrays, "create_array(3, 0)", numbers(0, 0, 0))
    assert_value(arrays, "array_get([4, 5, 6], 1)", Number(5))
    assert_value(arrays, "array_set([4, 5, 6], 1, 9)", numbers(4, 9, 6))
    assert_value(arrays, "xs = [1, 2] ys = array_set(xs, 0, 7) xs", numbers(1, 2))


def test_array_transformers():
    arrays = library("array")
    assert_value(arrays, "xs = [1, 2, 3, 4] xs.sum()", Number(10))
    assert_value(arrays, "xs = [1, 2, 3, 4] xs.average()", Number(2.5))
    assert_value(arrays, "xs = [] xs.average()", Number(0))
    assert_value(arrays, "xs = [1, 2, 3] xs.reverse() xs", numbers(3, 2, 1))
    assert_value(arrays, "xs = [3, 1, 2, 1] xs.sort() xs", numbers(1, 1, 2, 3))
    assert_value(arrays, "xs = [] xs.sort()", Array([]))


def test_array_map_and_filter():
    arrays = library("array")
    source = """
        fn double(x) { x * 2 }
        fn positive(x) { x > 0 }
        xs = [-1, 2, -3, 4]
        xs.filter(positive)
        xs.map(double)
        xs
    """
    assert_value(arrays, source, numbers(4, 8))


def test_core_loads_everything(capsys):
    core = library("core")
    assert_value(core, "xs = [3, 1, 2] xs.sort() xs.sum() + factorial(3)", Number(12))
    eval_source('print_array(["a", 1])', core)
    assert capsys.readouterr().out == "[\na\n,\n1\n,\n]\n"
    eval_source("print_array([])", core)
    assert capsys.readouterr().out == "[\n]\n"
    assert {"stdlib/core.m", "stdlib/math.m", "stdlib/array.m"} <= core.imported_files
