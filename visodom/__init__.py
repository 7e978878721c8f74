"""Visual odometry building blocks: rotations and poses, ORB features, two-view
geometry, PnP, ICP, optical flow, the direct method and bundle adjustment."""

__version__ = "0.1.0"

__all__ = [
    "rotation",
    "rng",
    "bal",
    "reprojection",
    "bundle_adjustment",
    "epipolar",
    "lie",
    "pnp",
    "icp",
    "orb",
    "matching",
    "optical_flow",
    "triangulation",
    "direct_method",
]