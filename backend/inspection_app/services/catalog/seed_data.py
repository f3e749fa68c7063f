"""
Default catalog: 7 food-safety pillars, 35 weighted indicators and the
threshold configuration. Loaded by scripts/seed_catalog.py.

RISK WEIGHTS: high = 3, medium = 2, low = 1
"""

PILLARS = [
    {"pillar_number": 1, "name": "Food Procurement & Supply", "description": "Indicators related to raw material sourcing, freshness, and water safety"},
    {"pillar_number": 2, "name": "Storage & Temperature Control", "description": "Indicators for proper storage, refrigeration, and pest control"},
    {"pillar_number": 3, "name": "Food Preparation & Cooking", "description": "Indicators for cooking temperatures, cross-contamination prevention, and utensil hygiene"},
    {"pillar_number": 4, "name": "Personal Hygiene & Health", "description": "Indicators for food handler health, protective clothing, and handwashing"},
    {"pillar_number": 5, "name": "Cleanliness & Sanitation", "description": "Indicators for kitchen environment, waste disposal, and cleaning schedules"},
    {"pillar_number": 6, "name": "Serving & Distribution", "description": "Indicators for hygienic serving, utensil cleanliness, and food transportation"},
    {"pillar_number": 7, "name": "Management & Awareness", "description": "Indicators for training, record-keeping, and food safety supervision"},
]

# (pillar_number, indicator_number, name, risk_level, weight)
INDICATORS = [
    # Pillar 1: Food Procurement & Supply
    (1, 1, "Approved and safe raw material sources", "high", 3),
    (1, 2, "Freshness of raw materials", "high", 3),
    (1, 3, "No use of expired / damaged food", "high", 3),
    (1, 4, "Proper vendor records", "medium", 2),
    (1, 5, "Safe water used for food preparation", "high", 3),
    # Pillar 2: Storage & Temperature Control
    (2, 6, "Dry storage cleanliness", "medium", 2),
    (2, 7, "Separation of raw & cooked food", "high", 3),
    (2, 8, "Adequate refrigeration", "high", 3),
    (2, 9, "Proper labeling & FIFO followed", "medium", 2),
    (2, 10, "Pest-free storage area", "high", 3),
    # Pillar 3: Food Preparation & Cooking
    (3, 11, "Proper cooking temperatures achieved", "high", 3),
    (3, 12, "Cross-contamination prevention", "high", 3),
    (3, 13, "Clean utensils & equipment", "medium", 2),
    (3, 14, "Use of potable water for cooking", "high", 3),
    (3, 15, "Safe reheating practices", "medium", 2),
    # Pillar 4: Personal Hygiene & Health
    (4, 16, "Food handlers medically examined", "high", 3),
    (4, 17, "Use of clean protective clothing", "medium", 2),
    (4, 18, "Handwashing facilities available", "high", 3),
    (4, 19, "No ill person handling food", "high", 3),
    (4, 20, "Personal hygiene awareness", "low", 1),
    # Pillar 5: Cleanliness & Sanitation
    (5, 21, "Clean kitchen environment", "medium", 2),
    (5, 22, "Safe waste disposal system", "medium", 2),
    (5, 23, "Clean water source maintained", "high", 3),
    (5, 24, "Regular cleaning schedule followed", "low", 1),
    (5, 25, "No accumulation of waste", "medium", 2),
    # Pillar 6: Serving & Distribution
    (6, 26, "Hygienic serving practices", "high", 3),
    (6, 27, "Clean serving utensils", "medium", 2),
    (6, 28, "Protection from environmental contamination", "medium", 2),
    (6, 29, "Safe transportation of food", "medium", 2),
    (6, 30, "Timely consumption after preparation", "high", 3),
    # Pillar 7: Management & Awareness
    (7, 31, "Food safety training conducted", "low", 1),
    (7, 32, "Display of hygiene instructions", "low", 1),
    (7, 33, "Record keeping & monitoring", "medium", 2),
    (7, 34, "Emergency food safety response readiness", "medium", 2),
    (7, 35, "Overall food safety supervision", "high", 3),
]

# (key, value, type, description)
CONFIG = [
    ("low_risk_max_score", "15", "number", "Maximum weighted score for Low Risk classification"),
    ("medium_risk_max_score", "35", "number", "Maximum weighted score for Medium Risk classification (score > low_max and <= medium_max)"),
    ("high_risk_indicator_threshold", "5", "number", "If non-compliant high-risk indicators reach this count, classify as High Risk regardless of score"),
    ("require_all_photos", "true", "boolean", "Require photos from all categories before submission"),
    ("require_surveillance_sample", "false", "boolean", "Require at least one surveillance sample per inspection"),
    ("department_name", "Food Safety and Standards Authority of India", "string", "Department name for watermarks and reports"),
    ("watermark_opacity", "0.7", "number", "Opacity for photo watermarks (0.1 to 1.0)"),
]
