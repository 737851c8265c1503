from trik.events import EventRecorder, SolverEvent
from trik.ik_chain import Target
from trik.trik import ChainSolver


def test_event_payload_access():
    event = SolverEvent("update", {"best": 1.5})
    assert event["best"] == 1.5


def test_recorder_collects_solver_events(chain):
    recorder = EventRecorder()
    solver = ChainSolver(chain, Target((60, 80, 0)), listeners=[recorder], enable_twist=False)
    solver.solve()
    names = recorder.names()
    assert names[0] == "reset"
    assert names[1:3] == ["align", "iteration"] or names[1:4] == ["align", "update", "iteration"]
    assert 1 <= len(recorder.of("iteration")) <= 5
    assert recorder.of("update")
    recorder.clear()
    assert recorder.events == []


def test_listener_can_be_removed(chain):
    recorder = EventRecorder()
    solver = ChainSolver(chain, Target((60, 80, 0)))
    solver.add_listener(recorder)
    solver.remove_listener(recorder)
    solver.solve()
    assert recorder.events == []
