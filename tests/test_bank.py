import math

import numpy as np

from tag_tracking.bank import FilterBank, compute_control, unpack_symmetric
from tag_tracking.common import Detection, Extrinsics, StepResult, VehicleState
from tag_tracking.config import CameraConfig, TrackerConfig
from tag_tracking.frames import Calibration
from tag_tracking.pose_log import format_lines
from tag_tracking.publisher import PoseBoard
from tag_tracking.tracker import propagate_state

STAMP = (1_700_000_000, 500)


def _calib(extr=Extrinsics()):
    return Calibration.from_extrinsics(extr, CameraConfig().K)


def _still():
    return VehicleState()


def test_unpack_symmetric_packing():
    M = unpack_symmetric([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    np.testing.assert_allclose(M, [[1, 2, 4], [2, 3, 5], [4, 5, 6]])
    np.testing.assert_allclose(M, M.T)


def test_control_without_vehicle_state():
    cfg = TrackerConfig(nostate_process_noise=1e-3)
    ctl = compute_control(_calib(), None, cfg)
    assert not ctl.has_state
    np.testing.assert_allclose(ctl.twist, np.zeros((6, 1)))
    np.testing.assert_allclose(ctl.process_cov, np.eye(3) * 1e-3)
    np.testing.assert_allclose(ctl.W_R_B, np.eye(3))
    np.testing.assert_allclose(ctl.W_t_B, np.zeros((3, 1)))


def test_control_without_vehicle_state_keeps_last_pose():
    last = (np.eye(3), np.array([[1.0], [2.0], [3.0]]))
    ctl = compute_control(_calib(), None, TrackerConfig(), last_pose=last)
    np.testing.assert_allclose(ctl.W_t_B, last[1])


def test_control_sums_velocity_covariances():
    vehicle = VehicleState(vel_cov=(1e-2, 0.0, 2e-2, 0.0, 0.0, 3e-2), avel_cov=(1e-3, 1e-4, 1e-3, 0.0, 0.0, 1e-3))
    ctl = compute_control(_calib(), vehicle, TrackerConfig())
    assert ctl.has_state
    expected = unpack_symmetric(vehicle.vel_cov) + unpack_symmetric(vehicle.avel_cov)
    np.testing.assert_allclose(ctl.process_cov, expected)


def test_control_twist_goes_through_attitude_and_mount():
    h = math.sqrt(0.5)
    vehicle = VehicleState(attitude=(h, 0.0, 0.0, h), velocity=(1.0, 0.0, 0.0))  # yaw +90°
    ctl = compute_control(_calib(), vehicle, TrackerConfig())
    np.testing.assert_allclose(ctl.twist.ravel(), [0.0, -1.0, 0.0, 0.0, 0.0, 0.0], atol=1e-12)

    # camera yawed by +90° on the body: body x becomes camera -y
    calib = _calib(Extrinsics(yaw=math.pi / 2))
    ctl = compute_control(calib, VehicleState(velocity=(1.0, 0.0, 0.0)), TrackerConfig())
    np.testing.assert_allclose(ctl.twist.ravel(), [0.0, -1.0, 0.0, 0.0, 0.0, 0.0], atol=1e-12)


def test_add_detection_creates_filters_in_first_seen_order():
    bank = FilterBank()
    bank.add_detections([Detection(9, (0.0, 0.0, 1.0)), Detection(2, (0.1, 0.0, 1.0))])
    bank.add_detection(Detection(9, (0.0, 0.0, 1.1)))
    assert [f.tag_id for f in bank] == [9, 2]
    assert len(bank) == 2
    assert 9 in bank and 2 in bank
    assert not bank.get(9).initialized


def test_first_match_wins():
    bank = FilterBank()
    bank.add_detections([Detection(4, (0.0, 0.0, 1.0)), Detection(4, (0.5, 0.5, 2.0))])
    assert bank.match(4).translation == (0.0, 0.0, 1.0)
    board = PoseBoard()
    cfg = TrackerConfig()
    calib = _calib()
    bank.step(calib, compute_control(calib, _still(), cfg), cfg, board, STAMP)
    np.testing.assert_array_equal(bank.get(4).position.ravel(), [0.0, 0.0, 1.0])


def test_step_seeds_then_predicts_and_clears_detections():
    bank = FilterBank()
    board = PoseBoard()
    cfg = TrackerConfig()
    calib = _calib()
    control = compute_control(calib, _still(), cfg)

    bank.add_detection(Detection(5, (0.2, 0.1, 1.3)))
    assert bank.step(calib, control, cfg, board, STAMP) is StepResult.LOG
    assert bank.new_detections == []
    pose = board.get(5)
    assert pose.key == "5"
    assert (pose.sec, pose.nsec) == STAMP
    np.testing.assert_allclose(pose.position, (0.2, 0.1, 1.3))


def test_unmatched_filter_coasts_on_prediction():
    bank = FilterBank()
    board = PoseBoard()
    cfg = TrackerConfig()
    calib = _calib()
    bank.add_detection(Detection(5, (0.2, 0.1, 1.3)))
    bank.step(calib, compute_control(calib, _still(), cfg), cfg, board, STAMP)

    moving = VehicleState(velocity=(0.5, 0.0, 0.2), angular_velocity=(0.0, 0.1, 0.0))
    control = compute_control(calib, moving, cfg)
    for _ in range(20):
        expected = propagate_state(bank.get(5).position, control.twist, cfg.predict_period_s)
        bank.step(calib, control, cfg, board, STAMP)
        np.testing.assert_allclose(np.array(board.get(5).position), expected.ravel())
    assert 5 in bank
    assert bank.get(5).coasting_cycles == 20


def test_publishes_in_world_frame():
    bank = FilterBank()
    board = PoseBoard()
    cfg = TrackerConfig()
    calib = _calib(Extrinsics(tx=0.1))
    vehicle = VehicleState(position=(1.0, 2.0, 3.0))
    bank.add_detection(Detection(1, (0.0, 0.0, 1.0)))
    bank.step(calib, compute_control(calib, vehicle, cfg), cfg, board, STAMP)
    np.testing.assert_allclose(board.get(1).position, (1.1, 2.0, 4.0))


def test_degenerate_detection_skips_correction():
    bank = FilterBank()
    board = PoseBoard()
    cfg = TrackerConfig()
    calib = _calib()
    control = compute_control(calib, _still(), cfg)
    bank.add_detection(Detection(8, (0.0, 0.0, 1.0)))
    bank.step(calib, control, cfg, board, STAMP)

    bank.add_detection(Detection(8, (0.0, 0.0, -1.0)))
    bank.step(calib, control, cfg, board, STAMP)
    assert bank.rejected_corrections == 1
    np.testing.assert_allclose(board.get(8).position, (0.0, 0.0, 1.0))


def test_empty_bank_is_idle():
    bank = FilterBank()
    cfg = TrackerConfig()
    calib = _calib()
    result = bank.step(calib, compute_control(calib, None, cfg), cfg, PoseBoard(), STAMP)
    assert result is StepResult.IDLE
    assert not bank.has_estimate


def test_reset_drops_everything():
    bank = FilterBank()
    bank.add_detection(Detection(1, (0.0, 0.0, 1.0)))
    bank.reset()
    assert len(bank) == 0
    assert bank.new_detections == []


def test_filter_without_state_is_never_published():
    bank = FilterBank()
    board = PoseBoard(keep_history=True)
    cfg = TrackerConfig()
    calib = _calib()
    control = compute_control(calib, _still(), cfg)

    # tag 2 gets a filter but its detection is gone before any step
    bank.add_detection(Detection(2, (0.3, 0.0, 2.0)))
    bank.new_detections.clear()

    for _ in range(3):
        bank.add_detection(Detection(1, (0.0, 0.0, 1.0)))
        assert bank.step(calib, control, cfg, board, STAMP) is StepResult.LOG

    assert not bank.get(2).initialized
    assert bank.get(2).position is None
    assert board.get(2) is None
    assert board.get(1) is not None
    assert {p.tag_id for p in board.history} == {1}
    lines = format_lines(bank, STAMP).splitlines()
    assert [int(line.split()[2]) for line in lines] == [1]
