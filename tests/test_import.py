import importlib


def test_import_package():
    """Basic smoke test: can import the package and check version."""
    pkg = importlib.import_module("rusle_leaf")

    assert hasattr(pkg, "__version__")
    assert pkg.__version__.startswith("0.")


def test_import_functions():
    """Check that key functions are exposed at top-level."""
    import rusle_leaf as rl

    assert hasattr(rl, "__version__")
    assert hasattr(rl, "__author__")

    expected_exports = {
        "run_rusle",
        "RusleConfig",
        "k_factor",
        "p_factor",
        "CoverFactorEngine",
        "classify_soil_loss",
        "summarize",
        "reduce_region",
    }

    for name in expected_exports:
        assert hasattr(rl, name), f"Expected '{name}' to be re-exported"

    assert expected_exports.issubset(set(rl.__all__))
