from __future__ import annotations

import logging
import mimetypes
import os

from errors import DefaultLoadFailure, PatternError
from ingest import MAX_IMAGE_BYTES, ImagePayload, ingest_bytes

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(__file__)
DEFAULT_IMAGE_PATH = os.path.join(BASE_DIR, "static", "default-crochet.png")

# Shown with the sample photo on first visit; no model call is spent on it.
DEFAULT_PATTERN_TEXT = """1. Pattern Information:
- Name: Simple Circular Crochet Coaster
- Difficulty Level: Beginner
- Approximate Size: 4.5 inches (11.5 cm) in diameter
- Time to Complete: 30-45 minutes

2. Materials Needed:
- Yarn: Medium weight (worsted/category 4) cotton yarn in white
- Hook Size: H/8 (5.0 mm)
- Notions: Yarn needle for weaving in ends
- Yardage: Approximately 20-25 yards (18-23 meters)

3. Abbreviations:
- ch: chain
- sc: single crochet
- sl st: slip stitch
- st(s): stitch(es)
- rnd: round
- inc: increase (2 stitches in same stitch)

4. Gauge:
- 3.5 sc = 1 inch (2.5 cm)
- Not critical for this project

5. Pattern Instructions:
- Foundation: Ch 4, sl st to first ch to form a ring.
- Round 1: Ch 1 (does not count as a stitch), 8 sc into the ring, sl st to first sc to join. (8 sts)
- Round 2: Ch 1, 2 sc in each st around, sl st to first sc to join. (16 sts)
- Round 3: Ch 1, *1 sc in first st, 2 sc in next st; repeat from * around, sl st to first sc to join. (24 sts)
- Round 4: Ch 1, *1 sc in each of first 2 sts, 2 sc in next st; repeat from * around, sl st to first sc to join. (32 sts)
- Round 5: Ch 1, *1 sc in each of first 3 sts, 2 sc in next st; repeat from * around, sl st to first sc to join. (40 sts)
- Round 6: Ch 1, sc in each st around, sl st to first sc to join. (40 sts)
- Fasten off and weave in ends.

6. Finishing Instructions:
- Use yarn needle to weave in all ends securely
- Block lightly if desired to ensure flat, even shape
- For best results, wet block by soaking in water, gently squeezing out excess, and laying flat to dry

7. Variations & Tips:
- Change yarn color for different looks
- Use a larger hook for a more open, lacy texture
- Add a final round of reverse single crochet (crab stitch) for a decorative edge
- Make several and join them together for a larger project like a table runner
- For a stiffer coaster, consider using cotton yarn with a slightly smaller hook

8. Care Instructions:
- Hand wash in cool water with mild soap
- Lay flat to dry
- Do not bleach
- Steam or wet block as needed to reshape"""


def load_default_image(path: str = DEFAULT_IMAGE_PATH) -> ImagePayload:
    """Read the bundled sample photo.

    Any failure (missing file, non-image type, undecodable bytes) is reported
    as a single DefaultLoadFailure.
    """
    media_type, _ = mimetypes.guess_type(path)
    try:
        with open(path, "rb") as f:
            data = f.read(MAX_IMAGE_BYTES + 1)
        return ingest_bytes(data, media_type or "")
    except (OSError, PatternError) as exc:
        logger.warning("default image %s unavailable: %s", path, exc)
        raise DefaultLoadFailure() from exc
