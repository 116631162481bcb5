from cron_bridge.hooks import HookRegistry


def test_filters_run_in_priority_then_registration_order():
    hooks = HookRegistry()
    hooks.add_filter("f", lambda v: v + ["late"], 20)
    hooks.add_filter("f", lambda v: v + ["first"], 10)
    hooks.add_filter("f", lambda v: v + ["second"], 10)

    assert hooks.apply_filters("f", []) == ["first", "second", "late"]


def test_filter_receives_extra_arguments():
    hooks = HookRegistry()
    hooks.add_filter("f", lambda value, a, b: (value, a, b))
    assert hooks.apply_filters("f", None, 1, 2) == (None, 1, 2)


def test_unknown_filter_returns_value():
    assert HookRegistry().apply_filters("missing", 42) == 42


def test_remove_and_has_filter():
    hooks = HookRegistry()

    def cb(value):
        return value

    hooks.add_filter("f", cb)
    assert hooks.has_filter("f")
    assert hooks.has_filter("f", cb)
    assert hooks.remove_filter("f", cb) is True
    assert hooks.remove_filter("f", cb) is False
    assert not hooks.has_filter("f")


def test_bound_methods_compare_equal_on_removal():
    class Interceptor:
        def handle(self, value):
            return "handled"

    hooks = HookRegistry()
    target = Interceptor()
    hooks.add_filter("f", target.handle)
    assert hooks.remove_filter("f", target.handle)
    assert hooks.apply_filters("f", None) is None


def test_do_action_counts_callbacks():
    hooks = HookRegistry()
    seen = []
    hooks.add_action("a", lambda x: seen.append(x))
    hooks.add_action("a", lambda x: seen.append(x * 2))

    assert hooks.do_action("a", 3) == 2
    assert seen == [3, 6]
    assert hooks.do_action("nothing") == 0


def test_clear():
    hooks = HookRegistry()
    hooks.add_filter("a", lambda v: v)
    hooks.add_filter("b", lambda v: v)
    hooks.clear("a")
    assert not hooks.has_filter("a")
    assert hooks.has_filter("b")
    hooks.clear()
    assert not hooks.has_filter("b")
