import os
import sys
import unittest

import numpy as np

# Ensure project root is in path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from zeshto_hud import ZeshtoHUD
from zeshto_readiness import ReadinessGate
from zeshto_types import BoundingBox, QualityResult, ReadinessDecision


class TestZeshtoHUD(unittest.TestCase):

    def setUp(self):
        self.hud = ZeshtoHUD(0.7, 0.6)
        self.gate = ReadinessGate(0.7, 0.6)
        self.frame = np.zeros((480, 640, 3), dtype=np.uint8)

    def _face(self, confidence=0.9, quality=0.9, box=BoundingBox(200, 100, 240, 280), count=1):
        return QualityResult(
            face_detected=True, confidence=confidence, quality=quality,
            face_count=count, bounding_box=box,
        )

    def test_render_without_result(self):
        decision = self.gate.evaluate(QualityResult.no_face())
        annotated, t_hud = self.hud.render(self.frame, None, decision)
        self.assertEqual(annotated.shape, self.frame.shape)
        self.assertGreaterEqual(t_hud, 0)

    def test_render_does_not_modify_input_frame(self):
        result = self._face()
        annotated, _ = self.hud.render(self.frame, result, self.gate.evaluate(result))
        self.assertFalse(np.any(self.frame))
        self.assertTrue(np.any(annotated))

    def test_render_none_frame(self):
        annotated, t_hud = self.hud.render(None, None, ReadinessDecision(ready=False))
        self.assertIsNone(annotated)
        self.assertEqual(t_hud, 0.0)

    def test_box_outside_frame_is_ignored(self):
        result = self._face(box=BoundingBox(900, 900, 50, 50))
        annotated, _ = self.hud.render(self.frame, result, self.gate.evaluate(result))
        self.assertEqual(annotated.shape, self.frame.shape)

    def test_multi_face_label(self):
        result = self._face(count=3)
        annotated, _ = self.hud.render(self.frame, result, self.gate.evaluate(result),
                                       status={"camera": {"fps_actual": 29.7}})
        self.assertIsNotNone(annotated)

    def test_state_mapping(self):
        ready = self._face()
        low = self._face(confidence=0.3)
        errored = QualityResult.no_face(error="boom")
        self.assertEqual(ZeshtoHUD.state_for(ready, self.gate.evaluate(ready)), "READY")
        self.assertEqual(ZeshtoHUD.state_for(low, self.gate.evaluate(low)), "ADJUST")
        self.assertEqual(ZeshtoHUD.state_for(None, ReadinessDecision(ready=False)), "NO_FACE")
        self.assertEqual(ZeshtoHUD.state_for(errored, self.gate.evaluate(errored)), "ERROR")

    def test_all_states_have_distinct_shapes(self):
        shapes = [props["shape"] for props in ZeshtoHUD.COLORS.values()]
        self.assertEqual(len(shapes), len(set(shapes)))


if __name__ == "__main__":
    unittest.main()
