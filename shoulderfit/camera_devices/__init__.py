"""Camera device backends (OpenCV webcam, Picamera2)."""
