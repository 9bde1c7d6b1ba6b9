"""
Rule-based fitness analysis built from the saved biometrics form and the
optional camera muscle scores. No external service is involved.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional

from capture.muscle_scorer import round_half_up

CM_PER_INCH = 2.54
LBS_PER_KG = 2.20462
MUSCLE_MASS_FRACTION = 0.4

MUSCLE_GAIN = "muscle-gain"
WEIGHT_LOSS = "weight-loss"

ACTIVITY_MULTIPLIERS = {
    "beginner": 1.375,
    "intermediate": 1.55,
    "advanced": 1.725,
}
SEDENTARY_MULTIPLIER = 1.2

GOAL_CALORIE_ADJUSTMENT = {
    MUSCLE_GAIN: 300,
    WEIGHT_LOSS: -500,
}

# goal -> (protein g/kg, carb fraction, fat fraction)
MACRO_SPLITS = {
    MUSCLE_GAIN: (2.2, 0.45, 0.25),
    WEIGHT_LOSS: (2.0, 0.35, 0.30),
}
DEFAULT_MACRO_SPLIT = (1.6, 0.50, 0.20)

GOAL_FOCUS_AREAS = {
    MUSCLE_GAIN: ["chest", "back", "legs"],
    WEIGHT_LOSS: ["core", "cardio", "full-body"],
}
DEFAULT_FOCUS_AREAS = ["strength", "endurance", "flexibility"]

# muscle group -> score below which it becomes a focus area
CAMERA_FOCUS_THRESHOLDS = (
    ("chest", 30),
    ("shoulders", 50),
    ("legs", 50),
)

GYM_LOCATION = {
    "name": "Ohio State University Recreation Center",
    "address": "337 W 17th Ave, Columbus, OH 43210",
    "hours": "6:00 AM - 11:00 PM (Mon-Fri), 8:00 AM - 10:00 PM (Weekends)",
    "features": [
        "Full weight room",
        "Cardio equipment",
        "Group fitness classes",
        "Indoor track",
        "Basketball courts",
    ],
    "recommended_times": ["Early morning (6-8 AM)", "Late evening (8-10 PM)"],
}

SAMPLE_MEALS = {
    "breakfast": {
        "name": "Protein Oatmeal",
        "calories": 520,
        "protein": 30,
        "carbs": 55,
        "fats": 15,
        "ingredients": ["1 cup oats", "1 scoop protein powder", "1 banana", "1 tbsp almond butter", "1 cup almond milk"],
    },
    "lunch": {
        "name": "Grilled Chicken Salad",
        "calories": 580,
        "protein": 45,
        "carbs": 35,
        "fats": 25,
        "ingredients": ["8oz grilled chicken breast", "Mixed greens", "1/2 avocado", "Cherry tomatoes", "Olive oil dressing"],
    },
    "dinner": {
        "name": "Salmon with Sweet Potato",
        "calories": 650,
        "protein": 50,
        "carbs": 60,
        "fats": 30,
        "ingredients": ["8oz salmon fillet", "1 large sweet potato", "Steamed broccoli", "1 tbsp olive oil"],
    },
    "snacks": [
        {"name": "Greek Yogurt with Berries", "calories": 250, "protein": 20, "carbs": 30, "fats": 8},
        {"name": "Protein Shake", "calories": 300, "protein": 30, "carbs": 20, "fats": 10},
    ],
}


class InvalidUserData(ValueError):
    """Height or weight is missing or not a positive number."""


def _normalize(value: Any) -> str:
    return str(value or "").strip().lower().replace("_", "-")


def _positive_float(user_data: Mapping[str, Any], key: str) -> float:
    try:
        value = float(user_data.get(key))
    except (TypeError, ValueError):
        raise InvalidUserData(f"'{key}' must be a number") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidUserData(f"'{key}' must be positive")
    return value


def bmi_category(bmi: float) -> str:
    if bmi < 18.5:
        return "Building up strength"
    if bmi < 25:
        return "Healthy weight range"
    if bmi < 30:
        return "Working towards optimal health"
    return "Ready for transformation"


def estimate_body_fat(bmi: float, gender: str) -> float:
    if gender == "male":
        bands = (8.0, 12.0, 18.0, 25.0)
    else:
        bands = (15.0, 20.0, 28.0, 35.0)
    if bmi < 20:
        return bands[0]
    if bmi < 25:
        return bands[1]
    if bmi < 30:
        return bands[2]
    return bands[3]


def body_fat_category(body_fat: float) -> str:
    if body_fat < 10:
        return "Elite Level"
    if body_fat < 15:
        return "Athletic"
    if body_fat < 20:
        return "Great Shape"
    return "Ready to Transform"


def fitness_score(bmi: float, fitness_level: str) -> int:
    score = 70
    if 18.5 <= bmi < 25:
        score += 15
    if fitness_level == "advanced":
        score += 10
    elif fitness_level == "intermediate":
        score += 5
    return score


def fitness_score_category(score: int) -> str:
    if score >= 90:
        return "Outstanding"
    if score >= 80:
        return "Excellent"
    if score >= 70:
        return "Great Potential"
    return "Ready to Grow"


def _camera_muscle_scores(user_data: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    camera = user_data.get("camera_results")
    if not isinstance(camera, Mapping):
        return None
    scores = camera.get("muscle_estimates")
    return scores if isinstance(scores, Mapping) else None


def areas_to_focus(primary_goal: str, muscle_scores: Optional[Mapping[str, Any]]) -> List[str]:
    areas = list(GOAL_FOCUS_AREAS.get(primary_goal, DEFAULT_FOCUS_AREAS))
    if muscle_scores:
        for group, threshold in CAMERA_FOCUS_THRESHOLDS:
            score = muscle_scores.get(group)
            if isinstance(score, (int, float)) and score < threshold and group not in areas:
                areas.append(group)
    return areas


def daily_calorie_target(
    weight_kg: float,
    height_cm: float,
    age: float,
    gender: str,
    fitness_level: str,
    primary_goal: str,
) -> int:
    """Mifflin-St Jeor BMR scaled by activity level and shifted by goal."""
    bmr = 10 * weight_kg + 6.25 * height_cm - 5 * age
    bmr += 5 if gender == "male" else -161
    tdee = bmr * ACTIVITY_MULTIPLIERS.get(fitness_level, SEDENTARY_MULTIPLIER)
    tdee += GOAL_CALORIE_ADJUSTMENT.get(primary_goal, 0)
    return round_half_up(tdee)


def macro_targets(weight_kg: float, calories: int, primary_goal: str) -> Dict[str, Dict[str, Any]]:
    protein_per_kg, carb_fraction, fat_fraction = MACRO_SPLITS.get(primary_goal, DEFAULT_MACRO_SPLIT)
    protein_g = round_half_up(weight_kg * protein_per_kg)
    carb_g = round_half_up(calories * carb_fraction / 4)
    fat_g = round_half_up(calories * fat_fraction / 9)

    def percentage(grams: int, kcal_per_gram: int) -> int:
        if calories <= 0:
            return 0
        return round_half_up(grams * kcal_per_gram / calories * 100)

    return {
        "protein": {
            "grams": protein_g,
            "percentage": percentage(protein_g, 4),
            "description": "Essential for muscle building and recovery",
        },
        "carbs": {
            "grams": carb_g,
            "percentage": percentage(carb_g, 4),
            "description": "Primary energy source for workouts",
        },
        "fats": {
            "grams": fat_g,
            "percentage": percentage(fat_g, 9),
            "description": "Important for hormone production and nutrient absorption",
        },
    }


def _exercise(name: str, sets: int, reps: str, rest: str) -> Dict[str, Any]:
    return {"name": name, "sets": sets, "reps": reps, "rest": rest}


def _day(focus: str, *exercises: Dict[str, Any]) -> Dict[str, Any]:
    return {"focus": focus, "exercises": list(exercises)}


def build_workout_plan(primary_goal: str, fitness_level: str) -> Dict[str, Dict[str, Any]]:
    beginner = fitness_level == "beginner"
    advanced = fitness_level == "advanced"
    sets = 4 if advanced else 3
    reps = "8-12" if beginner else "6-10" if advanced else "8-10"
    rest = "1-2 minutes" if beginner else "2-3 minutes" if advanced else "2 minutes"
    pull_up_reps = "3-5" if beginner else "6-8"

    rest_day = _day("Rest Day", _exercise("Light stretching or yoga", 1, "20-30 minutes", "N/A"))
    recovery_day = _day("Active Recovery", _exercise("Light cardio or walking", 1, "30-45 minutes", "N/A"))
    plank = _exercise("Plank", 3, "45-60 seconds", "1 minute")

    if primary_goal == MUSCLE_GAIN:
        return {
            "monday": _day(
                "Upper Body Strength",
                _exercise("Bench Press", sets, reps, rest),
                _exercise("Pull-ups", sets - 1, pull_up_reps, rest),
                _exercise("Overhead Press", sets - 1, reps, rest),
            ),
            "tuesday": _day(
                "Lower Body Power",
                _exercise("Squats", sets, reps, rest),
                _exercise("Deadlifts", sets - 1, "5-8" if beginner else "6-8", "3 minutes"),
                _exercise("Lunges", sets - 1, "12 each leg", rest),
            ),
            "wednesday": rest_day,
            "thursday": _day(
                "Push Day",
                _exercise("Incline Dumbbell Press", sets, reps, rest),
                _exercise("Dips", sets - 1, reps, rest),
                _exercise("Tricep Extensions", sets - 1, "10-12", "1-2 minutes"),
            ),
            "friday": _day(
                "Pull Day",
                _exercise("Bent-over Rows", sets, reps, rest),
                _exercise("Lat Pulldowns", sets - 1, reps, rest),
                _exercise("Bicep Curls", sets - 1, "12-15", "1-2 minutes"),
            ),
            "saturday": _day(
                "Legs & Core",
                _exercise("Front Squats", sets - 1, reps, rest),
                _exercise("Romanian Deadlifts", sets - 1, "10-12", rest),
                plank,
            ),
            "sunday": recovery_day,
        }

    if primary_goal == WEIGHT_LOSS:
        return {
            "monday": _day(
                "Full Body HIIT",
                _exercise("Burpees", 4, "10-15", "1 minute"),
                _exercise("Mountain Climbers", 3, "30 seconds", "30 seconds"),
                _exercise("Jump Squats", 3, "15-20", "1 minute"),
            ),
            "tuesday": _day(
                "Cardio & Core",
                _exercise("Treadmill/Stationary Bike", 1, "20-30 minutes", "N/A"),
                plank,
                _exercise("Russian Twists", 3, "20 each side", "30 seconds"),
            ),
            "wednesday": rest_day,
            "thursday": _day(
                "Strength Training",
                _exercise("Goblet Squats", 3, "12-15", "1 minute"),
                _exercise("Dumbbell Rows", 3, "10-12", "1 minute"),
                _exercise("Push-ups", 3, "8-12", "1 minute"),
            ),
            "friday": _day(
                "HIIT Cardio",
                _exercise("High Knees", 4, "30 seconds", "30 seconds"),
                _exercise("Jumping Jacks", 3, "45 seconds", "15 seconds"),
                _exercise("Burpees", 3, "8-12", "1 minute"),
            ),
            "saturday": _day(
                "Active Recovery",
                _exercise("Walking or light jogging", 1, "30-45 minutes", "N/A"),
                _exercise("Yoga or stretching", 1, "20-30 minutes", "N/A"),
            ),
            "sunday": recovery_day,
        }

    return {
        "monday": _day(
            "Push Day",
            _exercise("Push-ups", sets, reps, rest),
            _exercise("Dips", sets - 1, reps, rest),
            _exercise("Overhead Press", sets - 1, reps, rest),
        ),
        "tuesday": _day(
            "Pull Day",
            _exercise("Pull-ups", sets, pull_up_reps, rest),
            _exercise("Bent-over Rows", sets - 1, reps, rest),
            _exercise("Lat Pulldowns", sets - 1, reps, rest),
        ),
        "wednesday": rest_day,
        "thursday": _day(
            "Legs & Core",
            _exercise("Squats", sets, reps, rest),
            _exercise("Lunges", sets - 1, "12 each leg", rest),
            plank,
        ),
        "friday": _day(
            "Upper Body",
            _exercise("Bench Press", sets, reps, rest),
            _exercise("Pull-ups", sets - 1, pull_up_reps, rest),
            _exercise("Overhead Press", sets - 1, reps, rest),
        ),
        "saturday": _day(
            "Full Body",
            _exercise("Deadlifts", sets, reps, rest),
            _exercise("Squats", sets - 1, reps, rest),
            _exercise("Push-ups", sets - 1, reps, rest),
        ),
        "sunday": recovery_day,
    }


def build_fitness_analysis(user_data: Mapping[str, Any]) -> Dict[str, Any]:
    """Full analysis document for a saved user record.

    Raises InvalidUserData when height or weight cannot be used.
    """
    height_cm = _positive_float(user_data, "height")
    weight_kg = _positive_float(user_data, "weight")
    try:
        age = float(user_data.get("age") or 0)
    except (TypeError, ValueError):
        age = 0.0
    gender = _normalize(user_data.get("gender"))
    fitness_level = _normalize(user_data.get("fitness_level"))
    primary_goal = _normalize(user_data.get("primary_goal"))

    height_in = height_cm / CM_PER_INCH
    weight_lbs = weight_kg * LBS_PER_KG
    bmi = weight_kg / (height_cm / 100) ** 2
    category = bmi_category(bmi)

    body_fat = estimate_body_fat(bmi, gender)
    muscle_kg = weight_kg * MUSCLE_MASS_FRACTION
    muscle_lbs = muscle_kg * LBS_PER_KG
    score = fitness_score(bmi, fitness_level)

    calories = daily_calorie_target(weight_kg, height_cm, age, gender, fitness_level, primary_goal)
    goal_text = primary_goal.replace("-", " ") or "general fitness"
    level_text = fitness_level or "current"

    return {
        "bmi": {
            "value": round(bmi, 1),
            "category": category,
            "description": (
                f"Your BMI of {bmi:.1f} shows you're {category.lower()}, "
                "and we're excited to help you reach your goals!"
            ),
        },
        "measurements": {
            "height": {
                "cm": round_half_up(height_cm),
                "inches": round_half_up(height_in),
                "display": f"{int(height_in // 12)}'{round_half_up(height_in % 12)}\"",
            },
            "weight": {
                "kg": round(weight_kg, 1),
                "lbs": round(weight_lbs, 1),
                "display": f"{weight_lbs:.1f} lbs",
            },
        },
        "body_fat_percentage": {
            "value": body_fat,
            "category": body_fat_category(body_fat),
            "description": (
                f"Your estimated body fat percentage of {body_fat:.1f}% shows "
                + ("excellent muscle definition" if body_fat < 15 else "great potential for building lean muscle")
            ),
        },
        "muscle_mass": {
            "value": round(muscle_lbs, 1),
            "unit": "lbs",
            "description": (
                f"Your estimated muscle mass of {muscle_lbs:.1f} lbs provides a "
                f"{'strong' if muscle_kg > 50 else 'solid'} foundation for building even more strength"
            ),
        },
        "fitness_score": {
            "value": score,
            "max": 100,
            "category": fitness_score_category(score),
            "description": (
                f"You have a {'strong' if score >= 80 else 'solid'} fitness foundation with "
                f"{'amazing' if score >= 80 else 'great'} potential for growth"
            ),
        },
        "areas_to_focus": areas_to_focus(primary_goal, _camera_muscle_scores(user_data)),
        "workout_plan": build_workout_plan(primary_goal, fitness_level),
        "gym_location": dict(GYM_LOCATION),
        "nutrition": {
            "daily_calories": {
                "target": calories,
                "description": f"Based on your {goal_text} goals and {level_text} activity level",
            },
            "macros": macro_targets(weight_kg, calories, primary_goal),
            "meals": SAMPLE_MEALS,
        },
    }
