"""Visual SLAM building blocks: rotations, BAL problems, curve fitting, pose estimation, ORB descriptors, optical flow, direct method and bundle adjustment."""

__version__ = "0.1.0"