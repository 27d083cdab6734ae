import unittest

import numpy as np

from overlay_kit.classify import decode_classification, softmax
from overlay_kit.errors import DecodeError
from overlay_kit.labels import LabelList
from overlay_kit.types import RegionOfInterest


class TestSoftmax(unittest.TestCase):
    def test_sums_to_one(self) -> None:
        rng = np.random.default_rng(0)
        for _ in range(20):
            p = softmax(rng.normal(0, 5, size=7))
            self.assertAlmostEqual(float(p.sum()), 1.0, delta=1e-6)
            self.assertTrue(np.all(p >= 0))

    def test_large_magnitudes_are_stable(self) -> None:
        for logits in ([1000.0, 1001.0, 999.0], [-1e4, 0.0, 1e4], [-1e300, -1e300], [3.0e38, -3.0e38, 0.0]):
            p = softmax(np.array(logits))
            self.assertTrue(np.all(np.isfinite(p)), msg=str(logits))
            self.assertAlmostEqual(float(p.sum()), 1.0, delta=1e-6)

    def test_preserves_order(self) -> None:
        p = softmax(np.array([0.1, 2.0, -1.0]))
        self.assertEqual(int(np.argmax(p)), 1)
        self.assertGreater(p[0], p[2])

    def test_rejects_empty_or_non_finite(self) -> None:
        with self.assertRaises(DecodeError):
            softmax(np.array([]))
        with self.assertRaises(DecodeError):
            softmax(np.array([0.0, np.nan]))
        with self.assertRaises(DecodeError):
            softmax(np.array([np.inf, 0.0]))


class TestDecodeClassification(unittest.TestCase):
    def test_argmax_label_and_probability(self) -> None:
        logits = np.array([[0.0, 0.0, 0.0, 5.0, 0.0, 0.0]], dtype=np.float32)
        region = RegionOfInterest(x=1, y=2, width=30, height=40)
        result = decode_classification(logits, LabelList(), region=region)
        self.assertEqual(result.class_id, 3)
        self.assertEqual(result.class_name, "Red")
        self.assertAlmostEqual(result.score, float(result.probabilities.max()))
        self.assertEqual(result.probabilities.shape, (6,))
        self.assertIs(result.region, region)

    def test_more_logits_than_labels_uses_placeholder(self) -> None:
        result = decode_classification(np.array([0.0, 1.0, 9.0]), LabelList(["a", "b"]))
        self.assertEqual(result.class_name, "class2")


if __name__ == "__main__":
    unittest.main()
