import json

import pytest

from shoulderfit.config import AppConfig, load_config


def write(tmp_path, data):
	p = tmp_path / "config.json"
	p.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
	return p


def test_missing_file_gives_defaults(tmp_path):
	cfg = load_config(tmp_path / "nope.json")
	assert cfg == AppConfig()
	assert cfg.smoothing.alpha == pytest.approx(0.4)
	assert cfg.estimator.k1 == pytest.approx(0.23)
	assert cfg.camera.width == 1280 and cfg.camera.height == 720


def test_malformed_file_gives_defaults(tmp_path):
	assert load_config(write(tmp_path, "{not json")) == AppConfig()


def test_non_object_root_gives_defaults(tmp_path):
	assert load_config(write(tmp_path, [1, 2, 3])) == AppConfig()


def test_values_are_read_and_coerced(tmp_path):
	cfg = load_config(
		write(
			tmp_path,
			{
				"smoothing": {"alpha": "0.25"},
				"estimator": {"k1": 0.2, "k2": "0.05"},
				"camera": {"backend": " PiCamera2 ", "index": 0, "width": "640", "height": 480},
				"overlay": {"mirror": "no", "jpeg_quality": 500},
				"database": {"url": " postgresql://localhost/fit "},
				"auth": {"user_header": "X-Forwarded-User"},
			},
		)
	)
	assert cfg.smoothing.alpha == pytest.approx(0.25)
	assert cfg.estimator.k2 == pytest.approx(0.05)
	assert cfg.camera.backend == "picamera2"
	assert cfg.camera.index == 0
	assert (cfg.camera.width, cfg.camera.height) == (640, 480)
	assert cfg.overlay.mirror is False
	assert cfg.overlay.jpeg_quality == 95
	assert cfg.database.url == "postgresql://localhost/fit"
	assert cfg.auth.user_header == "X-Forwarded-User"


@pytest.mark.parametrize("alpha", [0, -1, 2, "abc"])
def test_bad_alpha_falls_back(tmp_path, alpha):
	cfg = load_config(write(tmp_path, {"smoothing": {"alpha": alpha}}))
	assert cfg.smoothing.alpha == pytest.approx(0.4)


def test_inverted_size_bands_fall_back(tmp_path):
	cfg = load_config(write(tmp_path, {"estimator": {"m_from_cm": 50, "l_above_cm": 45}}))
	assert (cfg.estimator.m_from_cm, cfg.estimator.l_above_cm) == (40.0, 45.0)


def test_bad_capture_values_fall_back(tmp_path):
	cfg = load_config(write(tmp_path, {"capture": {"target_fps": 0, "max_read_failures": -3}}))
	assert cfg.capture.target_fps == pytest.approx(30.0)
	assert cfg.capture.max_read_failures == 30
