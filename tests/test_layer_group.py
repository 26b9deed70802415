import pytest

from mapterm.geo.layer_group import (
    DEFAULT_STYLE,
    GroupMode,
    LayerGroupController,
    LayerToggle,
    StyleSelection,
    SublayerInfo,
    ValidationError,
    cycle_style_name,
)


def _group(mode=GroupMode.NAMED):
    return LayerGroupController.from_sublayers(mode, [
        SublayerInfo("ws:roads", "line", ["line", "dashed"]),
        SublayerInfo("ws:rivers", "", ["blue"]),
        SublayerInfo("ws:cities"),
    ])


def test_cycle_left_from_default_wraps_through_sentinel():
    styles = ["a", "b", "c"]
    current = cycle_style_name(DEFAULT_STYLE, styles, -1)
    assert current == "c"
    current = cycle_style_name(current, styles, -1)
    assert current == "b"
    current = cycle_style_name(current, styles, -1)
    assert current == "a"
    assert cycle_style_name(current, styles, -1) == DEFAULT_STYLE


def test_cycle_right_visits_every_style_then_default():
    styles = ["a", "b"]
    seen = []
    current = DEFAULT_STYLE
    for _ in range(3):
        current = cycle_style_name(current, styles, 1)
        seen.append(current)
    assert seen == ["a", "b", DEFAULT_STYLE]


def test_cycle_without_styles_keeps_current():
    assert cycle_style_name("x", [], 1) == "x"


def test_group_mode_parse():
    assert GroupMode.parse("named") is GroupMode.NAMED
    assert GroupMode.parse("EO") is GroupMode.EO
    assert GroupMode.parse("OPAQUE_CONTAINER") is GroupMode.SINGLE
    assert GroupMode.parse(None) is GroupMode.SINGLE
    assert GroupMode.NAMED.toggleable and GroupMode.EO.toggleable
    assert not GroupMode.SINGLE.toggleable and not GroupMode.CONTAINER.toggleable


def test_from_sublayers_enables_all_with_group_style():
    groups = _group()
    assert [layer.enabled for layer in groups.layers] == [True, True, True]
    assert groups.layers[0].current_style == "line"
    assert groups.layers[1].style_label == "(default)"
    assert groups.effective_layer_list() == ("ws:roads,ws:rivers,ws:cities", "line,,")


def test_toggle_and_effective_list():
    groups = _group()
    assert groups.toggle(1) is False
    assert groups.effective_layer_list() == ("ws:roads,ws:cities", "line,")
    assert groups.toggle(1) is True


@pytest.mark.parametrize("mode", [GroupMode.SINGLE, GroupMode.CONTAINER])
def test_non_toggleable_groups_ignore_toggles(mode):
    groups = _group(mode)
    assert not groups.can_toggle
    assert groups.toggle(0) is False
    assert groups.layers[0].enabled
    assert groups.cycle_style(0, 1) == DEFAULT_STYLE
    assert groups.layers[0].current_style == "line"


def test_out_of_range_index_is_ignored():
    groups = _group()
    assert groups.toggle(7) is False
    assert len(groups.enabled_layers()) == 3


def test_disabling_only_layer_is_a_validation_error():
    groups = LayerGroupController(GroupMode.NAMED, [LayerToggle("ws:only")])
    groups.toggle(0)
    with pytest.raises(ValidationError, match="no layers enabled"):
        groups.effective_layer_list()


def test_cycle_style_per_sublayer():
    groups = _group()
    assert groups.cycle_style(0, 1) == "dashed"
    assert groups.cycle_style(0, 1) == DEFAULT_STYLE
    assert groups.cycle_style(1, -1) == "blue"
    assert groups.effective_layer_list()[1] == ",blue,"


def test_style_selection_wraps():
    sel = StyleSelection(["a", "b"])
    assert sel.current == "a"
    sel.next()
    assert sel.current == "b"
    sel.next()
    assert sel.current == "a"
    sel.prev()
    assert sel.current == "b"
    assert StyleSelection().label == "default"
