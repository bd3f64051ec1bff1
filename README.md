# stereoslam

Building blocks for a stereo visual SLAM system, in pure Python on top of
NumPy: binary descriptor tools, four-way stereo matching, robust absolute
pose estimation, a small SE(3) pose graph and the helpers used to correct a
map once a loop has been closed.

## Modules

### `stereoslam.brisk`

Functions for 64-byte (512-bit) binary descriptors, given as arrays of
`uint8`:

- `mean_value(descriptors)`: bitwise majority of the descriptors. A bit is set
  when at least half of them (rounded up) have it set. Returns `None` for an
  empty sequence and a copy of the descriptor when there is only one.
- `distance(a, b)`: Hamming distance, as a float, over the whole 8-byte words
  of the descriptors.
- `to_string(a)` / `from_string(s)`: the bytes as decimal numbers, each
  followed by a space, and back. Parsing stops at the first token that is
  not an integer.
- `to_mat32f(descriptors)`: a 2-D byte array is converted to `float32`
  element by element; a sequence of descriptors becomes an N x 512 matrix of
  0/1 values, most significant bit first.
- `to_mat8u(descriptors)`: stacks descriptors into an N x 64 byte matrix.

### `stereoslam.stereo_matcher`

- `DMatch(query_idx, train_idx, distance)` and `SDMatch(m1vs2, m3vs4, m1vs3, m2vs4)`:
  a two-way and a four-way correspondence. Cameras 1 and 2 belong to the first
  stereo frame, 3 and 4 to the second.
- `Norm`: `HAMMING`, `L1` or `L2`.
- `BruteForceMatcher(norm, cross_check)`, whose `radius_match(query, train, max_distance)`
  gives, for each query row, the train rows closer than `max_distance`,
  sorted by distance.
- `match_stereo_descriptors(matcher, max_distance, descriptors1, descriptors2, matches12, descriptors3, descriptors4, matches34)`:
  matches cameras 1-3 and 2-4 by radius search with Lowe's ratio test
  (`LOWE_RATIO = 0.8`) and keeps a feature when the 3-4 relation agrees with
  the 2-4 one. Results follow the order of `matches12`.
- `StereoMatcher(max_distance, norm, cross_check)` with the same `match`.
- `hamming_distance(a, b)`: number of differing bits between two byte arrays.

### `stereoslam.matching`

- `Match(map_point, measurement)`.
- `pair_matches(map_points, matched_indexes, measurements)`: pairs each matched
  index's map point with its measurement, in order.
- `match_to_points(map_points, find_matches)`: collects `position` and
  `descriptor` from each map point, calls
  `find_matches(positions, descriptors)`, which returns the matched indexes
  and their measurements, and pairs them.

### `stereoslam.pose_estimator`

- `PoseEstimator(estimator_type, minimal_method, generic_method, nonlinear_optimization, seed)`:
  RANSAC over a minimal solver (a P3P solver, or a linear six-point solver
  for `MinimalAlgorithm.EPNP`), an optional linear re-estimate from all
  inliers (`GenericAlgorithm.EPNP` or `UPNP`) and an optional
  Levenberg-Marquardt refinement.
  `estimate_pose(points, bearing_vectors, reference_pose)` returns the number
  of inliers and the 4x4 camera pose. The threshold defaults to half a pixel
  at a focal length of 800 and can be set with `set_ransac_threshold`,
  `set_ransac_pixel_threshold` and `set_ransac_iterations` (default 50).
- `EstimatorType`, `MinimalAlgorithm`, `GenericAlgorithm`: the option enums.
- `pixel_threshold(pixels, focal_length)`: angular threshold for a pixel
  tolerance.
- `bearing_vector(point, intrinsics)`: unit ray through an image point.
- `triangulate(bearing1, bearing2, translation, rotation)`: linear two-view
  triangulation in the first camera's frame.

### `stereoslam.pose_graph`

- `PoseGraph` with `add_vertex(vertex_id, pose, fixed)`,
  `add_edge(source, target, measurement)`, `vertex(vertex_id)`,
  `edges_of(vertex_id)` and `optimize(iterations)`, which runs
  Levenberg-Marquardt and returns the final chi-squared error.
  `PoseVertex` and `PoseEdge` hold the estimates and relative-pose
  measurements as 4x4 matrices.
- `SmoothEstimatePropagator(graph, max_distance, max_edge_cost)`, whose
  `propagate(vertex_id)` walks outward from a vertex and moves each reached
  vertex towards the pose its edge implies. The weight falls off
  exponentially with graph distance, so near vertices follow the constraint
  and far ones barely move. Fixed vertices are not moved.
- `make_isometry(rotation, translation)`, `invert_isometry(transform)` and
  `exponential_interpolation(start, end, step, max_distance)`.

### `stereoslam.loop_graph`

- `build_pose_graph(keyframe_poses, loops, query_id, match_id, match_pose)`:
  a graph with the first keyframe fixed, consecutive keyframes linked, earlier
  `LoopConstraint`s added, and the new loop linking `query_id` to `match_id`.
  Returns the graph and the new constraint.
- `is_loop_accepted(inliers, matches, query_position, match_pose)`: at least
  `MIN_LOOP_INLIERS` (20) inliers, at least `MIN_INLIER_RATIO` (0.8) of the
  matches, and no axis offset above `MAX_LOOP_OFFSET` (5).
- `correct_point(point, original_pose, corrected_pose)`,
  `corrected_poses(keyframe_poses, graph, excluded)`,
  `apply_rigid_correction(poses, transform)` and
  `propagation_distance(num_keyframes)`, which is the larger of 20 and a tenth
  of the keyframe count.

## What it does not do

The package has no feature extraction, no camera or image input, no map
storage, no tracking loop and no background loop-closing thread. It does not
detect loops itself, and it has no command-line program. The functions above
work on arrays and plain Python objects that the caller supplies.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Example

```python
import numpy as np
from stereoslam import brisk

a = np.zeros(64, dtype=np.uint8)
b = np.full(64, 0xFF, dtype=np.uint8)
print(brisk.distance(a, b))                                # 512.0
print(brisk.mean_value([a, b, b]).tolist() == b.tolist())  # True
```