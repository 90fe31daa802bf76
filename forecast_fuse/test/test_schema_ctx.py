import pytest
import warnings

from forecast_fuse import schema_ctx as ff_ctx


def test_schemaerror():
    assert issubclass(ff_ctx.SchemaError, Exception)

    with pytest.raises(ff_ctx.SchemaError) as ei:
        raise ff_ctx.SchemaError("boom", ff_ctx.SchemaCtx(["x", "y"], file="f.yaml"))
    s = str(ei.value)
    assert "boom" in s
    assert "(at f.yaml:x/y)" in s


def test_error_hierarchy():
    for cls in [ff_ctx.MalformedUnitError, ff_ctx.UnmatchedTimeError,
                ff_ctx.UnknownVariableTypeError, ff_ctx.AttributeMismatchError]:
        assert issubclass(cls, ff_ctx.SchemaValidationError)
        assert issubclass(cls, ff_ctx.SchemaError)


def test_schemawarning():
    assert issubclass(ff_ctx.SchemaWarning, UserWarning)

    warn_obj = ff_ctx.SchemaWarning("heads up", ff_ctx.SchemaCtx(["x"], file="f.yaml"))
    s = str(warn_obj)
    assert "heads up" in s and "f.yaml:x" in s

    with warnings.catch_warnings(record=True) as rec:
        warnings.simplefilter("always")
        warnings.warn(warn_obj)
        assert any(isinstance(w.message, ff_ctx.SchemaWarning) for w in rec)


def test_validation_error_failures():
    ctx = ff_ctx.SchemaCtx([])
    failures = [ff_ctx.SchemaValidationError("missing title", ctx.dive("dataset", "title")),
                ff_ctx.SchemaValidationError("bad size", ctx.dive("process_error", "propagation", "size"))]
    err = ff_ctx.SchemaValidationError("invalid record", ctx, failures)
    s = str(err)
    assert s.splitlines()[0] == "invalid record"
    assert "dataset/title" in s
    assert "process_error/propagation/size" in s
    assert [f.path for f in err.failures] == ["dataset/title", "process_error/propagation/size"]


def test_schema_ctx():
    ctx = ff_ctx.SchemaCtx(["a"], file="doc.yaml")
    child = ctx.dive("b", 0)
    assert child.path == "a/b/0"
    assert child.parent().path == "a/b"
    assert str(ff_ctx.SchemaCtx(["a"])) == "<METADATA STREAM>:a"

    with pytest.raises(ff_ctx.SchemaValidationError) as ei:
        child.error("broken")
    assert ei.value.path == "a/b/0"

    with pytest.raises(ff_ctx.UnknownVariableTypeError):
        child.error("broken", cls=ff_ctx.UnknownVariableTypeError)


def test_context_cfg():
    cfg = ff_ctx.ContextCfg({'a': {'b': [1, 2]}, 'status': 'wrong'}, ff_ctx.SchemaCtx([], file="doc.yaml"))
    assert 'a' in cfg
    assert cfg['a']['b'][1].value() == 2
    assert cfg['a']['b'][1].schema_ctx.path == 'a/b/1'
    assert [item.value() for item in cfg['a']['b'].items()] == [1, 2]
    assert cfg.get('missing').value() is None
    assert cfg.get('missing').get('deeper').value() is None
    assert 'x' not in cfg.get('missing')

    with pytest.raises(ff_ctx.SchemaValidationError) as ei:
        cfg.required('title')
    assert ei.value.path == 'title'

    with pytest.raises(ff_ctx.SchemaValidationError) as ei:
        cfg.convert(int, 'status')
    assert ei.value.path == 'status'
    assert "'wrong'" in str(ei.value)
