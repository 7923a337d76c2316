"""Tests for the automaton bundle parser."""
import pytest
from archrel.lts_model import StateType, LtsSyntaxError, StructuralMismatchError
from archrel.lts_parser import parse_lts


def _by_name(clts, scenario_id, name):
    return next(
        s for s in clts.states.values()
        if s.scenario_id == scenario_id and s.local_id == name
    )


class TestHandshakeParser:
    def test_component_count(self, handshake_bundle):
        assert len(handshake_bundle) == 2

    def test_component_indices(self, handshake_bundle):
        assert [c.component_index for c in handshake_bundle] == [0, 1]

    def test_state_types(self, handshake_bundle):
        clts = handshake_bundle[0]
        assert _by_name(clts, "request", "idle").type is StateType.INITIAL
        assert _by_name(clts, "request", "done").type is StateType.END
        assert _by_name(clts, "request", "failed").type is StateType.ERROR

    def test_scenario_designations(self, handshake_bundle):
        clts = handshake_bundle[0]
        scenario = clts.initial_scenario()
        assert scenario is clts.final_scenario()
        assert clts.state(scenario.initial_state).local_id == "idle"
        assert clts.state(scenario.end_state).local_id == "done"
        assert clts.state(scenario.error_state).local_id == "failed"

    def test_message_attributes(self, handshake_bundle):
        clts = handshake_bundle[1]
        idle = _by_name(clts, "request", "idle")
        out = sorted(clts.outgoing(idle), key=lambda t: t.probability)
        assert [t.probability for t in out] == [0.1, 0.9]
        success = out[1]
        assert success.sync_key == ("request", 0, 0, 1)
        assert success.component_index == 1
        assert not success.is_send


class TestSilentTransitions:
    def test_silent_count(self, sensor_bundle):
        assert len(sensor_bundle[0].silent_transitions()) == 1

    def test_silent_endpoints(self, sensor_bundle):
        clts = sensor_bundle[0]
        t = clts.silent_transitions()[0]
        assert clts.source(t).local_id == "r1"
        assert clts.destination(t).local_id == "q0"
        assert t.source_scenario == "read"
        assert t.destination_scenario == "report"
        assert t.probability == 1.0

    def test_silent_default_probability(self, sensor_bundle):
        assert sensor_bundle[1].silent_transitions()[0].probability == 1.0

    def test_scenario_flags(self, plant_bundle):
        clts = plant_bundle[0]
        assert clts.initial_scenario().scenario_id == "read"
        assert clts.final_scenario().scenario_id == "actuate"


class TestSingleStateScenario:
    def test_sole_state_is_end(self, single_bundle):
        clts = single_bundle[0]
        scenario = clts.final_scenario()
        assert scenario.end_state == scenario.initial_state


class TestParserErrors:
    def test_syntax_error(self):
        with pytest.raises(LtsSyntaxError):
            parse_lts("component 0 { scenario s initial { state a initial ")

    def test_unknown_state(self):
        text = """
        component 0 {
          scenario s initial final {
            state a initial
            msg a -> b p=1.0 seq=0 from 0 to 1
          }
        }
        """
        with pytest.raises(StructuralMismatchError):
            parse_lts(text)

    def test_duplicate_component(self):
        text = """
        component 0 { scenario s initial final { state a initial } }
        component 0 { scenario s initial final { state a initial } }
        """
        with pytest.raises(StructuralMismatchError):
            parse_lts(text)

    def test_probability_out_of_range(self):
        text = """
        component 0 {
          scenario s initial final {
            state a initial
            state b end
            msg a -> b p=1.5 seq=0 from 0 to 1
          }
        }
        """
        with pytest.raises(ValueError):
            parse_lts(text)

    def test_components_sorted_by_index(self):
        text = """
        component 1 { scenario s initial final { state a initial } }
        component 0 { scenario s initial final { state a initial } }
        """
        assert [c.component_index for c in parse_lts(text)] == [0, 1]

    def test_comments_ignored(self):
        text = """
        # leading comment
        component 0 {
          scenario s initial final { state a initial }  # trailing
        }
        """
        assert len(parse_lts(text)) == 1
