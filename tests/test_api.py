"""
Tests for the Integrity Monitor HTTP API
"""

import base64
import time

import cv2
import numpy as np
import pytest

CALIBRATION = {
    "profile_id": "api-test",
    "homography": [[1, 0, 0], [0, 1, 0], [0, 0, 1]],
}


def _encoded_frame(seed=0):
    rng = np.random.default_rng(seed)
    image = rng.integers(60, 200, size=(120, 160, 3), dtype=np.uint8)
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return base64.b64encode(buffer.tobytes()).decode("ascii")


def _start(client, **extra):
    body = {"calibration": CALIBRATION, "config": {"frame_rate": 20}}
    body.update(extra)
    response = client.post("/api/integrity/start", json=body)
    assert response.status_code == 200, response.text
    return response.json()["scan_id"]


def _wait_for_frames(client, scan_id, count, timeout=3.0):
    deadline = time.monotonic() + timeout
    status = None
    while time.monotonic() < deadline:
        status = client.get(f"/api/integrity/status/{scan_id}").json()
        if status["frames_processed"] >= count:
            return status
        time.sleep(0.05)
    return status


class TestHealth:

    def test_service_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_router_health(self, client):
        response = client.get("/api/integrity/health")

        assert response.status_code == 200
        assert "active_scans" in response.json()

    def test_models_status(self, client, monkeypatch):
        import integrity_monitor.api as api

        monkeypatch.setattr(api, "check_models", lambda model_dir=None: {
            "dlib": False, "dlib_predictor": False, "ultralytics": True, "yolo_weights": False,
        })
        response = client.get("/api/integrity/models-status")

        assert response.status_code == 200
        assert response.json()["ultralytics"] is True


class TestScanLifecycle:
    """Start, stream, inspect and stop a scan"""

    def test_full_scan(self, client):
        start = client.post("/api/integrity/start", json={"calibration": CALIBRATION, "config": {"frame_rate": 20}})
        assert start.status_code == 200
        data = start.json()
        scan_id = data["scan_id"]
        assert scan_id.startswith("SCAN_")
        assert data["status"] == "scanning"
        assert data["plugins"] == ["ScriptedFacePlugin", "LightingDetector"]

        for i in range(3):
            response = client.post("/api/integrity/stream", json={
                "scan_id": scan_id,
                "frame_base64": _encoded_frame(i),
                "timestamp": i * 0.05,
            })
            assert response.status_code == 200
            assert response.json()["accepted"] is True

        status = _wait_for_frames(client, scan_id, 3)
        assert status["state"] == "scanning"
        assert status["frames_processed"] == 3
        assert set(status["signals"]) == {"face", "lighting"}
        assert status["risk_level"] == "minimal"

        violations = client.get(f"/api/integrity/violations/{scan_id}")
        assert violations.status_code == 200
        assert violations.json() == []

        stop = client.post("/api/integrity/stop", json={"scan_id": scan_id})
        assert stop.status_code == 200
        result = stop.json()
        assert result["scan_id"] == scan_id
        assert result["state"] == "completed"
        assert result["frames_processed"] == 3
        assert result["risk_score"]["score"] == 0
        assert result["violations"] == []

        assert client.get(f"/api/integrity/status/{scan_id}").status_code == 404

    def test_stop_immediately(self, client):
        scan_id = _start(client)

        response = client.post("/api/integrity/stop", json={"scan_id": scan_id})

        assert response.status_code == 200
        assert response.json()["frames_processed"] == 0

    def test_bounded_scan_finishes_on_its_own(self, client):
        scan_id = _start(client, duration_ms=100)
        time.sleep(0.4)

        response = client.post("/api/integrity/stream", json={"scan_id": scan_id, "frame_base64": _encoded_frame()})
        assert response.status_code == 409

        result = client.post("/api/integrity/stop", json={"scan_id": scan_id}).json()
        assert result["state"] == "completed"
        assert result["completeness_score"] == 0.0

    def test_finished_scan_is_evicted(self, client, monkeypatch):
        """Scans nobody stops are dropped once their results expire"""
        from integrity_monitor import api

        monkeypatch.setattr(api, "FINISHED_SCAN_TTL_S", 0.0)
        scan_id = _start(client, duration_ms=100)

        deadline = time.monotonic() + 3.0
        status_code = 200
        while time.monotonic() < deadline:
            status_code = client.get(f"/api/integrity/status/{scan_id}").status_code
            if status_code == 404:
                break
            time.sleep(0.05)

        assert status_code == 404
        assert scan_id not in api._sessions
        stop = client.post("/api/integrity/stop", json={"scan_id": scan_id})
        assert stop.status_code == 404

    def test_re_enroll(self, client):
        scan_id = _start(client)
        landmarks = [[float(i % 10), float(i // 10) + (i % 3) * 0.1] for i in range(68)]

        response = client.post("/api/integrity/re-enroll", json={
            "scan_id": scan_id, "identity_id": "cand-2", "landmarks": landmarks,
        })
        assert response.status_code == 200
        assert response.json()["re_enrolled"] is True

        bad = client.post("/api/integrity/re-enroll", json={
            "scan_id": scan_id, "identity_id": "cand-2", "landmarks": landmarks[:5],
        })
        assert bad.status_code == 400

        client.post("/api/integrity/stop", json={"scan_id": scan_id})


class TestErrors:

    def test_unknown_scan(self, client):
        assert client.get("/api/integrity/status/SCAN_NOPE").status_code == 404
        assert client.get("/api/integrity/violations/SCAN_NOPE").status_code == 404
        assert client.post("/api/integrity/stop", json={"scan_id": "SCAN_NOPE"}).status_code == 404
        response = client.post("/api/integrity/stream", json={"scan_id": "SCAN_NOPE", "frame_base64": ""})
        assert response.status_code == 404

    @pytest.mark.parametrize("payload", ["not base64!!", base64.b64encode(b"not an image").decode()])
    def test_bad_frame(self, client, payload):
        scan_id = _start(client)

        response = client.post("/api/integrity/stream", json={"scan_id": scan_id, "frame_base64": payload})
        assert response.status_code == 400

        client.post("/api/integrity/stop", json={"scan_id": scan_id})

    def test_invalid_config(self, client):
        response = client.post("/api/integrity/start", json={
            "calibration": CALIBRATION, "config": {"frame_rate": -5},
        })

        assert response.status_code == 400

    def test_singular_calibration(self, client):
        response = client.post("/api/integrity/start", json={
            "calibration": {"profile_id": "bad", "homography": [[1, 0, 0], [1, 0, 0], [0, 0, 1]]},
        })

        assert response.status_code == 422
