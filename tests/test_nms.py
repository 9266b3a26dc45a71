import unittest

import numpy as np

from clashvision.nms import NMSConfig, filter_by_confidence, group_by_class, nms_indices, suppress
from clashvision.types import BoundingBox


def _box(x1, y1, x2, y2, conf, cls=0) -> BoundingBox:
    return BoundingBox(float(x1), float(y1), float(x2), float(y2), cls, conf)


class TestSuppress(unittest.TestCase):
    def test_empty(self) -> None:
        self.assertEqual(suppress([], NMSConfig(iou_threshold=0.5)), [])

    def test_single_box_survives(self) -> None:
        b = _box(0, 0, 10, 10, 0.9)
        self.assertEqual(suppress([b], NMSConfig(iou_threshold=0.5)), [b])

    def test_overlapping_box_removed(self) -> None:
        a = _box(0, 0, 10, 10, 0.9)
        b = _box(1, 1, 11, 11, 0.8)
        c = _box(20, 20, 30, 30, 0.7)
        self.assertEqual(suppress([c, b, a], NMSConfig(iou_threshold=0.5)), [a, c])

    def test_iou_equal_to_threshold_is_kept(self) -> None:
        a = _box(0, 0, 10, 10, 0.9)
        b = _box(5, 0, 15, 10, 0.8)  # IoU = 50 / 150
        kept = suppress([a, b], NMSConfig(iou_threshold=50.0 / 150.0 + 1e-9))
        self.assertEqual(kept, [a, b])
        kept = suppress([a, b], NMSConfig(iou_threshold=0.3))
        self.assertEqual(kept, [a])

    def test_confidence_floor(self) -> None:
        a = _box(0, 0, 10, 10, 0.9)
        low = _box(50, 50, 60, 60, 0.1)
        self.assertEqual(suppress([a, low], NMSConfig(confidence_floor=0.25)), [a])

    def test_ties_keep_input_order(self) -> None:
        first = _box(0, 0, 10, 10, 0.5)
        second = _box(1, 1, 11, 11, 0.5)
        third = _box(40, 40, 50, 50, 0.5)
        self.assertEqual(suppress([first, second, third], NMSConfig(iou_threshold=0.5)), [first, third])
        self.assertEqual(suppress([second, first, third], NMSConfig(iou_threshold=0.5)), [second, third])

    def test_max_detections(self) -> None:
        boxes = [_box(i * 20, 0, i * 20 + 10, 10, 0.9 - i * 0.1) for i in range(5)]
        kept = suppress(boxes, NMSConfig(max_detections=2))
        self.assertEqual(kept, boxes[:2])

    def test_per_class_keeps_overlapping_other_class(self) -> None:
        a = _box(0, 0, 10, 10, 0.9, cls=0)
        b = _box(1, 1, 11, 11, 0.8, cls=1)
        c = _box(1, 1, 11, 11, 0.85, cls=0)
        self.assertEqual(suppress([a, b, c], NMSConfig(iou_threshold=0.5)), [a])
        self.assertEqual(suppress([a, b, c], NMSConfig(iou_threshold=0.5, per_class=True)), [a, b])

    def test_per_class_merges_sorted_and_capped(self) -> None:
        boxes = [
            _box(0, 0, 10, 10, 0.6, cls=1),
            _box(20, 0, 30, 10, 0.9, cls=0),
            _box(40, 0, 50, 10, 0.7, cls=1),
            _box(60, 0, 70, 10, 0.8, cls=0),
        ]
        kept = suppress(boxes, NMSConfig(per_class=True))
        self.assertEqual([b.confidence for b in kept], [0.9, 0.8, 0.7, 0.6])
        kept = suppress(boxes, NMSConfig(per_class=True, max_detections=3))
        self.assertEqual([b.confidence for b in kept], [0.9, 0.8, 0.7])

    def test_per_class_ties_keep_input_order(self) -> None:
        first = _box(0, 0, 10, 10, 0.7, cls=1)
        second = _box(20, 0, 30, 10, 0.7, cls=0)
        third = _box(40, 0, 50, 10, 0.7, cls=1)
        kept = suppress([first, second, third], NMSConfig(per_class=True))
        self.assertEqual(kept, [first, second, third])
        kept = suppress([first, second, third], NMSConfig(per_class=True, max_detections=2))
        self.assertEqual(kept, [first, second])

    def test_degenerate_boxes_never_suppressed(self) -> None:
        big = _box(0, 0, 10, 10, 0.9)
        point = _box(5, 5, 5, 5, 0.8)
        line = _box(2, 2, 8, 2, 0.7)
        self.assertEqual(suppress([big, point, line], NMSConfig(iou_threshold=0.0)), [big, point, line])

    def test_random_boxes_properties(self) -> None:
        rng = np.random.default_rng(7)
        for per_class in (False, True):
            xy = rng.uniform(0, 100, size=(60, 2))
            wh = rng.uniform(1, 30, size=(60, 2))
            conf = rng.uniform(0, 1, size=60)
            cls = rng.integers(0, 2, size=60)
            boxes = [
                BoundingBox(float(x), float(y), float(x + w), float(y + h), int(c), float(s))
                for (x, y), (w, h), s, c in zip(xy, wh, conf, cls)
            ]
            cfg = NMSConfig(iou_threshold=0.4, confidence_floor=0.2, per_class=per_class)
            kept = suppress(boxes, cfg)

            eligible = [b for b in boxes if b.confidence >= 0.2]
            for b in kept:
                self.assertIn(b, eligible)
            confs = [b.confidence for b in kept]
            self.assertEqual(confs, sorted(confs, reverse=True))
            for i, a in enumerate(kept):
                for b in kept[i + 1 :]:
                    if per_class and a.class_id != b.class_id:
                        continue
                    self.assertLessEqual(a.iou(b), 0.4)


class TestNmsIndices(unittest.TestCase):
    def test_indices_order(self) -> None:
        boxes = np.array([[20, 20, 30, 30], [1, 1, 11, 11], [0, 0, 10, 10]], dtype=np.float32)
        scores = np.array([0.7, 0.8, 0.9], dtype=np.float32)
        keep = nms_indices(boxes, scores, 0.5)
        self.assertEqual(keep.tolist(), [2, 0])

    def test_empty_indices(self) -> None:
        keep = nms_indices(np.zeros((0, 4)), np.zeros((0,)), 0.5)
        self.assertEqual(keep.shape, (0,))


class TestHelpers(unittest.TestCase):
    def test_filter_and_group(self) -> None:
        boxes = [_box(0, 0, 1, 1, 0.3, 0), _box(0, 0, 1, 1, 0.6, 1), _box(0, 0, 1, 1, 0.9, 1)]
        self.assertEqual(filter_by_confidence(boxes, 0.6), boxes[1:])
        grouped = group_by_class(boxes)
        self.assertEqual(sorted(grouped), [0, 1])
        self.assertEqual(len(grouped[1]), 2)

    def test_config_validation(self) -> None:
        with self.assertRaises(ValueError):
            NMSConfig(iou_threshold=1.5)
        with self.assertRaises(ValueError):
            NMSConfig(max_detections=-1)


if __name__ == "__main__":
    unittest.main()
