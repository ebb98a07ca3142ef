"""
Weekly Adaptation Service
Reads last week's activity for each user with an active plan and rebuilds next week
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta

from fitplan.errors import ExternalDependencyDegradation, NotFoundError
from fitplan.generator import PlanGenerator, WeekAdjustments
from fitplan.models import db, User, FitnessPlan, ActivityLog, AdaptationLog, AdaptationRun
from fitplan.reasoning import RuleOnlyAdvisor, advisor_from_config
from fitplan.safety import (
    SafetyValidator, SafetyProfile, MAX_INTENSITY_INCREASE, MAX_INTENSITY_INCREASE_BEGINNER,
    MAX_VOLUME_INCREASE, MIN_REST_CHANGE_SECONDS, MAX_REST_CHANGE_SECONDS,
)

logger = logging.getLogger(__name__)


TARGET_INTENSITY = 7
AI_VOLUME_THRESHOLD = 30
AI_INTENSITY_THRESHOLD = 25
NO_ACTIVE_PLAN_MESSAGE = 'No active fitness plan found. Create a new plan to get started.'


@dataclass
class Adaptation:
    type: str
    description: str
    reason: str
    impact: str = 'medium'
    adjustments: dict = field(default_factory=dict)
    exercises: list = field(default_factory=list)
    source: str = 'rules'
    safety_validated: bool = False

    @classmethod
    def from_candidate(cls, raw, source='ai'):
        return cls(
            type=raw.get('type'),
            description=raw.get('description'),
            reason=raw.get('reason') or '',
            impact=raw.get('impact') or 'medium',
            adjustments=raw.get('adjustments', {}),
            exercises=[n for n in (raw.get('exercises') or []) if isinstance(n, str)],
            source=source,
        )

    def to_dict(self):
        return asdict(self)


@dataclass
class AdherenceAnalysis:
    scheduled_workouts: int = 0
    completed_workouts: int = 0
    adherence_score: float = 0.0
    average_intensity: float = 0.0
    average_duration: float = 0.0
    consistency_score: float = 0.0
    logged_days: int = 0


@dataclass
class Deficiencies:
    volume_deficiency: float = 0.0
    intensity_deficiency: float = 0.0
    weak_muscle_groups: list = field(default_factory=list)
    missed_workout_types: list = field(default_factory=list)
    potential_overtraining: bool = False
    recommended_deload: bool = False

    def to_dict(self):
        return {
            'volume_deficiency': self.volume_deficiency,
            'intensity_deficiency': self.intensity_deficiency,
            'weak_muscle_groups': list(self.weak_muscle_groups),
            'missed_workout_types': list(self.missed_workout_types),
            'recovery_indicators': {
                'potential_overtraining': self.potential_overtraining,
                'recommended_deload': self.recommended_deload,
            },
        }


@dataclass
class AdaptationResult:
    user_id: int
    plan_id: int = None
    week_number: int = None
    adaptations_applied: list = field(default_factory=list)
    rejected_adaptations: int = 0
    adherence: dict = field(default_factory=dict)
    deficiencies: dict = field(default_factory=dict)
    next_week_plan: dict = field(default_factory=dict)
    recommendations: list = field(default_factory=list)
    measurement_requests: list = field(default_factory=list)

    @property
    def adherence_score(self):
        return self.adherence.get('adherence_score', 0.0)

    @classmethod
    def no_active_plan(cls, user_id):
        return cls(
            user_id=user_id,
            recommendations=[{'category': 'general', 'priority': 'low', 'message': NO_ACTIVE_PLAN_MESSAGE}],
        )

    def to_dict(self):
        return asdict(self)


class AdaptationEngine:

    def __init__(self, generator=None, validator=None, advisor=None):
        self.validator = validator or SafetyValidator()
        self.generator = generator or PlanGenerator(validator=self.validator)
        self.advisor = advisor or RuleOnlyAdvisor()

    def adapt_user(self, user_id, trigger='scheduled', today=None):
        """
        Analyse the user's past week and rebuild the next week of their active plan.

        Args:
            user_id: user to adapt
            trigger: 'scheduled' for the weekly job, 'manual' for on-demand runs
            today: reference date (defaults to today)

        Returns:
            AdaptationResult; an empty one when the user has no active, unexpired plan
        """
        if today is None:
            today = date.today()
            now = datetime.utcnow()
        else:
            now = datetime.combine(today, datetime.max.time())
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")

        plan = FitnessPlan.query.filter_by(user_id=user_id, status='active').first()
        if not plan or plan.is_expired(today):
            logger.info("User %s has no active plan, nothing to adapt", user_id)
            return AdaptationResult.no_active_plan(user_id)

        current = plan.current_week_number(today)
        week = plan.get_week(current)
        workouts = list(week.workouts) if week else []
        logs = ActivityLog.between(user_id, now - timedelta(days=7), now)

        analysis = self.analyze_adherence(workouts, logs)
        deficiencies = self.derive_deficiencies(workouts, logs, analysis)
        profile = SafetyProfile.from_user(user, plan)

        candidates = self.rule_candidates(analysis, deficiencies)
        if deficiencies.volume_deficiency > AI_VOLUME_THRESHOLD or \
                deficiencies.intensity_deficiency > AI_INTENSITY_THRESHOLD:
            candidates += self.ai_candidates(plan, user, analysis, deficiencies, today)

        accepted, rejected = [], 0
        for candidate in candidates:
            check = self.validator.validate_adaptation(candidate, profile)
            if check.valid:
                candidate.safety_validated = True
                accepted.append(candidate)
            else:
                rejected += 1
                logger.info("Rejected %s adaptation for user %s: %s",
                            candidate.source, user_id, '; '.join(check.errors))

        try:
            next_week = current + 1
            if next_week <= plan.duration_weeks:
                hints = self.next_week_hints(plan, accepted)
                new_week = self.generator.regenerate_week(plan.id, next_week, hints, commit=False)
                summary = self.summarize_next_week(new_week, week, accepted)
            else:
                summary = {'week_number': None, 'total_workouts': 0, 'estimated_duration_minutes': 0,
                           'total_sets': 0, 'new_exercises': 0, 'difficulty': 'same',
                           'note': 'The plan ends this week'}

            if week is not None:
                week.completed_workouts = analysis.completed_workouts
                week.adherence_score = analysis.adherence_score
            scored = [w.adherence_score for w in plan.weeks
                      if w.week_number <= current and w.adherence_score is not None]
            if scored:
                plan.adherence_score = round(sum(scored) / len(scored), 1)

            result = AdaptationResult(
                user_id=user_id,
                plan_id=plan.id,
                week_number=next_week,
                adaptations_applied=[a.to_dict() for a in accepted],
                rejected_adaptations=rejected,
                adherence=asdict(analysis),
                deficiencies=deficiencies.to_dict(),
                next_week_plan=summary,
                recommendations=self.recommendations(analysis, deficiencies, week),
                measurement_requests=self.measurement_requests(analysis, deficiencies, today),
            )

            plan.add_adaptation({
                'date': today.isoformat(),
                'week_number': next_week,
                'trigger': trigger,
                'adaptations': [a.description for a in accepted],
                'adherence_score': analysis.adherence_score,
            })
            db.session.add(AdaptationLog(
                user_id=user_id,
                plan_id=plan.id,
                week_number=next_week,
                trigger=trigger,
                adherence_score=analysis.adherence_score,
                deficiencies=result.deficiencies,
                adaptations=result.adaptations_applied,
                rejected_count=rejected,
                recommendations=result.recommendations,
                measurement_requests=result.measurement_requests,
                next_week_summary=summary,
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Adapted plan %s for user %s: adherence %.1f%%, %d adaptations applied, %d rejected",
            plan.id, user_id, analysis.adherence_score, len(accepted), rejected,
        )
        return result

    # ========== ANALYSIS ==========

    def analyze_adherence(self, workouts, logs):
        completed_logs = [log for log in logs if log.completed]
        scheduled_ids = {w.id for w in workouts}
        logged_ids = {log.workout_id for log in completed_logs if log.workout_id}
        done = [w for w in workouts if w.status == 'completed' or w.id in logged_ids]
        # Completions logged outside the plan still count, up to what was scheduled
        unplanned = sum(1 for log in completed_logs if log.workout_id not in scheduled_ids)

        scheduled = len(workouts)
        completed = min(scheduled, len(done) + unplanned)
        adherence = round(100.0 * completed / scheduled, 1) if scheduled else 0.0

        intensities = [log.intensity for log in completed_logs if log.intensity is not None]
        durations = [log.duration_minutes for log in completed_logs if log.duration_minutes is not None]
        days = {log.logged_at.date() for log in logs if log.logged_at}

        return AdherenceAnalysis(
            scheduled_workouts=scheduled,
            completed_workouts=completed,
            adherence_score=adherence,
            average_intensity=round(sum(intensities) / len(intensities), 1) if intensities else 0.0,
            average_duration=round(sum(durations) / len(durations), 1) if durations else 0.0,
            consistency_score=round(min(100.0, 100.0 * len(days) / 7), 1),
            logged_days=len(days),
        )

    def derive_deficiencies(self, workouts, logs, analysis):
        logged_ids = {log.workout_id for log in logs if log.completed and log.workout_id}
        missed = [w for w in workouts if w.status != 'completed' and w.id not in logged_ids]

        weak, missed_types = [], []
        for workout in missed:
            groups = list(workout.target_muscle_groups or [])
            groups += [e.muscle_groups[0] for e in workout.exercises if e.muscle_groups]
            for group in groups:
                if group not in weak:
                    weak.append(group)
            if workout.workout_type and workout.workout_type not in missed_types:
                missed_types.append(workout.workout_type)

        intensity_gap = 100.0 * (TARGET_INTENSITY - analysis.average_intensity) / TARGET_INTENSITY
        return Deficiencies(
            volume_deficiency=round(100.0 - analysis.adherence_score, 1),
            intensity_deficiency=round(max(0.0, intensity_gap), 1),
            weak_muscle_groups=weak,
            missed_workout_types=missed_types,
            potential_overtraining=analysis.average_intensity > 8.5 and analysis.consistency_score > 90,
            recommended_deload=analysis.adherence_score < 40,
        )

    # ========== CANDIDATES ==========

    def rule_candidates(self, analysis, deficiencies):
        candidates = []
        if deficiencies.volume_deficiency > 20:
            candidates.append(Adaptation(
                type='volume',
                description='Reduce workout volume by 15%',
                reason=f"Only {analysis.adherence_score:.0f}% of scheduled workouts were completed",
                impact='medium',
                adjustments={'volume_change': -0.15},
            ))
        if analysis.consistency_score < 60:
            candidates.append(Adaptation(
                type='rest_adjustment',
                description='Lengthen rest between sets by 15 seconds',
                reason=f"Training logged on {analysis.logged_days} of the last 7 days",
                impact='low',
                adjustments={'rest_seconds_change': 15},
            ))
        if deficiencies.potential_overtraining:
            candidates.append(Adaptation(
                type='intensity',
                description='Reduce training intensity by 10%',
                reason='Very high intensity on most days of the week',
                impact='high',
                adjustments={'intensity_change': -0.10},
            ))
        elif analysis.adherence_score >= 90 and analysis.consistency_score >= 60:
            candidates.append(Adaptation(
                type='progression',
                description='Increase training intensity by 5%',
                reason='All scheduled workouts completed consistently',
                impact='medium',
                adjustments={'intensity_change': 0.05},
            ))
        return candidates

    def ai_candidates(self, plan, user, analysis, deficiencies, today=None):
        context = {
            'plan_summary': {
                'plan_type': plan.plan_type,
                'experience_level': plan.experience_level,
                'workouts_per_week': plan.workouts_per_week,
                'current_week': plan.current_week_number(today),
                'duration_weeks': plan.duration_weeks,
            },
            'deficiencies': deficiencies.to_dict(),
            'adherence_analysis': asdict(analysis),
            'user_preferences': {
                'intensity_preference': plan.intensity_preference,
                'disliked_exercises': plan.disliked_exercises or [],
                'preferred_workout_time': plan.preferred_workout_time,
            },
        }
        try:
            raw = self.advisor.suggest_adaptations(context)
        except ExternalDependencyDegradation as e:
            logger.warning("AI reasoning degraded for user %s: %s", user.id, e)
            return []
        except Exception:
            logger.exception("AI advisor %s failed for user %s", self.advisor.name, user.id)
            return []
        return [Adaptation.from_candidate(item) for item in raw or [] if isinstance(item, dict)]

    # ========== NEXT WEEK ==========

    def next_week_hints(self, plan, accepted):
        """Merge accepted adaptations into one set of hints, capped at the weekly limits."""
        hints = WeekAdjustments()
        workouts_per_week = plan.workouts_per_week
        volume_increase = intensity_change = rest_change = 0
        for adaptation in accepted:
            adj = adaptation.adjustments or {}
            volume_change = adj.get('volume_change', 0)
            if adaptation.type == 'volume' and volume_change < 0:
                scaled = max(2, math.floor(workouts_per_week * (1 + volume_change)))
                workouts_per_week = min(workouts_per_week, scaled)
            elif volume_change > 0:
                volume_increase += volume_change
            intensity_change += adj.get('intensity_change', 0)
            rest_change += adj.get('rest_seconds_change', 0)
            if adaptation.type == 'exercise_swap':
                hints.change_exercises += adaptation.exercises

        # Each candidate passed on its own; their sum must too
        intensity_cap = MAX_INTENSITY_INCREASE_BEGINNER if plan.experience_level == 'beginner' \
            else MAX_INTENSITY_INCREASE
        intensity_change = min(intensity_change, intensity_cap)
        hints.adjust_volume = round(min(volume_increase, MAX_VOLUME_INCREASE) * 100, 1)
        hints.increase_difficulty = intensity_change > 0
        hints.decrease_difficulty = intensity_change < 0
        hints.extra_rest_seconds = int(max(MIN_REST_CHANGE_SECONDS, min(MAX_REST_CHANGE_SECONDS, rest_change)))
        if workouts_per_week != plan.workouts_per_week:
            hints.workouts_per_week = workouts_per_week
        return hints

    def summarize_next_week(self, new_week, current_week, accepted):
        current_names = set()
        if current_week is not None:
            current_names = {e.exercise_name for w in current_week.workouts for e in w.exercises}
        next_names = {e.exercise_name for w in new_week.workouts for e in w.exercises}

        cuts = sum(1 for a in accepted if a.type == 'volume' and a.adjustments.get('volume_change', 0) < 0)
        progressions = sum(1 for a in accepted if a.type == 'progression')
        if cuts > progressions:
            difficulty = 'easier'
        elif progressions > cuts:
            difficulty = 'harder'
        else:
            difficulty = 'same'

        return {
            'week_number': new_week.week_number,
            'total_workouts': len(new_week.workouts),
            'estimated_duration_minutes': sum(w.estimated_duration_minutes or 0 for w in new_week.workouts),
            'total_sets': new_week.total_sets(),
            'new_exercises': len(next_names - current_names) if current_names else 0,
            'difficulty': difficulty,
        }

    # ========== GUIDANCE ==========

    def recommendations(self, analysis, deficiencies, week=None):
        items = []
        if analysis.adherence_score < 70:
            items.append({'category': 'coaching', 'priority': 'medium',
                          'message': 'Schedule workouts at the same times each week to build the habit'})
        if deficiencies.volume_deficiency > 20:
            items.append({'category': 'coaching', 'priority': 'medium',
                          'message': 'Shorter sessions are easier to fit in: consistency beats length'})
        if deficiencies.potential_overtraining:
            items.append({'category': 'recovery', 'priority': 'high',
                          'message': 'Signs of overtraining: add an extra rest day this week'})
        if deficiencies.recommended_deload or (week is not None and week.should_recommend_deload()):
            items.append({'category': 'recovery', 'priority': 'high',
                          'message': 'Treat next week as a deload: lighter loads and fewer sets'})
        if deficiencies.weak_muscle_groups:
            groups = ', '.join(g.replace('_', ' ') for g in deficiencies.weak_muscle_groups[:3])
            items.append({'category': 'focus', 'priority': 'medium',
                          'message': f"Focus on strengthening: {groups}"})
        if not items:
            items.append({'category': 'general', 'priority': 'low',
                          'message': 'Great week, keep the same rhythm'})
        return items

    def measurement_requests(self, analysis, deficiencies, today):
        requests = []
        if deficiencies.volume_deficiency > 25 or analysis.adherence_score < 50:
            requests.append({
                'type': 'weight',
                'description': 'Weekly weight check-in',
                'priority': 'medium',
                'instructions': 'Weigh yourself in the morning, before breakfast',
                'due_date': (today + timedelta(days=3)).isoformat(),
            })
        if deficiencies.recommended_deload:
            requests.append({
                'type': 'fitness_test',
                'description': 'Fitness re-assessment',
                'priority': 'high',
                'instructions': 'Max push-ups in one set and a 1-minute plank hold',
                'due_date': (today + timedelta(days=7)).isoformat(),
            })
        return requests

    # ========== AUDIT ==========

    def latest(self, user_id):
        return AdaptationLog.query.filter_by(user_id=user_id).order_by(
            AdaptationLog.created_at.desc(), AdaptationLog.id.desc()
        ).first()

    def history(self, user_id, limit=10):
        return AdaptationLog.query.filter_by(user_id=user_id).order_by(
            AdaptationLog.created_at.desc(), AdaptationLog.id.desc()
        ).limit(limit).all()


def engine_from_app(app, advisor=None):
    generator = PlanGenerator(min_candidates=app.config.get('MIN_CANDIDATE_EXERCISES', 10))
    return AdaptationEngine(generator=generator, validator=generator.validator,
                            advisor=advisor or advisor_from_config(app.config))


def _adapt_in_context(app, user_id, advisor, trigger):
    with app.app_context():
        return engine_from_app(app, advisor).adapt_user(user_id, trigger=trigger)


def run_weekly_adaptation(app, advisor=None, trigger='scheduled'):
    """Cron entry point: adapt every user with an active plan, in batches"""
    with app.app_context():
        batch_size = max(1, int(app.config.get('ADAPTATION_BATCH_SIZE', 10)))
        pause = float(app.config.get('ADAPTATION_BATCH_PAUSE_SECONDS', 1.0))
        advisor = advisor or advisor_from_config(app.config)

        run = AdaptationRun(trigger=trigger, status='running')
        db.session.add(run)
        db.session.commit()

        today = date.today()
        user_ids = [
            row[0] for row in db.session.query(FitnessPlan.user_id).filter(
                FitnessPlan.status == 'active',
                FitnessPlan.end_date >= today,
            ).distinct().order_by(FitnessPlan.user_id).all()
        ]
        db.session.commit()

        results, errors = [], []
        for start in range(0, len(user_ids), batch_size):
            batch = user_ids[start:start + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {
                    executor.submit(_adapt_in_context, app, user_id, advisor, trigger): user_id
                    for user_id in batch
                }
                for future in as_completed(futures):
                    user_id = futures[future]
                    try:
                        results.append(future.result().to_dict())
                    except Exception as e:
                        logger.error("Adaptation failed for user %s: %s", user_id, e)
                        errors.append({'user_id': user_id, 'error': str(e)})

            if pause and start + batch_size < len(user_ids):
                time.sleep(pause)

        run.total_users = len(user_ids)
        run.processed_users = len(results)
        run.failed_users = len(errors)
        if not errors:
            run.status = 'success'
        else:
            run.status = 'partial' if results else 'error'
            run.error_message = '\n'.join(f"user {e['user_id']}: {e['error']}" for e in errors[:10])
        run.finished_at = datetime.utcnow()
        db.session.commit()

        logger.info("Weekly adaptation finished: %d users, %d processed, %d failed",
                    len(user_ids), len(results), len(errors))
        return {
            'run_id': run.id,
            'total_users': len(user_ids),
            'processed_users': len(results),
            'failed_users': len(errors),
            'errors': errors,
            'results': results,
        }
