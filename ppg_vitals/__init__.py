"""
PPG Vitals — fingertip photoplethysmography from a phone or laptop camera.
Cover the lens with a fingertip; the pipeline samples the red channel of each
frame, conditions the waveform, detects pulse peaks and reports heart rate,
HRV statistics and a coarse (non-diagnostic) rhythm flag.
"""

__version__ = "0.1.0"
__author__ = "ppg_vitals"
