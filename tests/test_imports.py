def test_imports():
    import emergency_planning as ep
    from emergency_planning.benders import (
        CallbackLShaped,
        IntegerLShaped,
        IterativeLShaped,
        MasterProblem,
        SubProblem,
    )
    from emergency_planning.config import load_config
    from emergency_planning.extensive import ExtensiveForm

    assert hasattr(ep, "__version__")
    assert callable(load_config)
    assert callable(ep.optimize)
    assert MasterProblem
    assert SubProblem
    assert IterativeLShaped
    assert CallbackLShaped
    assert IntegerLShaped
    assert ExtensiveForm
