from trionic.t7.ids import I_BUS_IDS, P_BUS_IDS, lookup_id


def test_p_bus_id():
    assert lookup_id(0x1A0) == "(P) Engine information"


def test_i_bus_id():
    assert lookup_id(0x220) == "(I) Trionic data initialization"


def test_p_bus_wins_when_on_both():
    assert lookup_id(0x280) == "(P) Pedals, reverse gear"


def test_unknown_id():
    assert lookup_id(0x001) == "??"


def test_every_i_bus_only_id_is_tagged_i():
    for can_id in set(I_BUS_IDS) - set(P_BUS_IDS):
        assert lookup_id(can_id).startswith("(I) ")