"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MemberRole(str, Enum):
    ADMIN = "admin"
    PARENT = "parent"
    CHILD = "child"
    STAFF = "staff"
    VIEWER = "viewer"


class MetricType(str, Enum):
    BLOOD_PRESSURE = "blood_pressure"
    WEIGHT = "weight"
    HEIGHT = "height"
    TEMPERATURE = "temperature"
    HEART_RATE = "heart_rate"
    BLOOD_SUGAR = "blood_sugar"
    OXYGEN_SATURATION = "oxygen_saturation"
    BMI = "bmi"


class StatusLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    DANGER = "danger"


class MedicationLogStatus(str, Enum):
    TAKEN = "taken"
    SKIPPED = "skipped"
    LATE = "late"


class VaccinationStatus(str, Enum):
    COMPLETED = "completed"
    OVERDUE = "overdue"
    DUE = "due"
    UPCOMING = "upcoming"


class VisitStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class MilestoneType(str, Enum):
    MOTOR = "motor"
    LANGUAGE = "language"
    SOCIAL = "social"
    COGNITIVE = "cognitive"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class GrowthMeasurement(str, Enum):
    HEIGHT = "height"
    WEIGHT = "weight"
    BMI = "bmi"
    HEAD_CIRCUMFERENCE = "head_circumference"


class Row(BaseModel):
    """Base for Supabase rows; unknown columns are kept so embeds pass through."""

    model_config = ConfigDict(extra="allow")


# Members and profiles


class FamilyMember(Row):
    id: str
    family_id: str
    user_id: Optional[str] = None
    name: str
    role: MemberRole = MemberRole.VIEWER
    avatar_url: Optional[str] = None
    birth_date: Optional[date] = None


class HealthProfile(Row):
    id: Optional[str] = None
    family_member_id: str
    blood_type: Optional[str] = None
    gender: Optional[Gender] = None
    allergies: Optional[List[str]] = None
    conditions: Optional[List[str]] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None
    insurance_provider: Optional[str] = None
    insurance_number: Optional[str] = None
    notes: Optional[str] = None


class MemberWithProfile(FamilyMember):
    health_profile: Optional[HealthProfile] = None


class MemberProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    birth_date: Optional[date] = None
    avatar_url: Optional[str] = None
    blood_type: Optional[str] = None
    gender: Optional[Gender] = None
    allergies: Optional[List[str]] = None
    conditions: Optional[List[str]] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None
    insurance_provider: Optional[str] = None
    insurance_number: Optional[str] = None
    notes: Optional[str] = None


# Health metrics


class HealthMetric(Row):
    id: str
    family_id: str
    member_id: str
    metric_type: MetricType
    value_primary: float
    value_secondary: Optional[float] = None
    unit: str
    measured_at: datetime
    notes: Optional[str] = None
    source: Optional[str] = None
    source_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class HealthMetricCreate(BaseModel):
    member_id: str
    metric_type: MetricType
    value_primary: float
    value_secondary: Optional[float] = None
    unit: Optional[str] = None
    measured_at: Optional[datetime] = None
    notes: Optional[str] = None
    source: str = "manual"


class HealthMetricUpdate(BaseModel):
    value_primary: Optional[float] = None
    value_secondary: Optional[float] = None
    unit: Optional[str] = None
    measured_at: Optional[datetime] = None
    notes: Optional[str] = None


class MetricStatus(BaseModel):
    status: StatusLevel
    label: str
    direction: Optional[str] = Field(default=None, description="low | high")


class MetricTypeInfo(BaseModel):
    metric_type: MetricType
    label: str
    unit: str
    min: float
    max: float
    secondary_label: Optional[str] = None
    secondary_min: Optional[float] = None
    secondary_max: Optional[float] = None
    normal_range: Optional[List[float]] = None
    secondary_normal_range: Optional[List[float]] = None


class MetricSummary(BaseModel):
    metric_type: MetricType
    value: str
    measured_at: datetime
    status: MetricStatus


class BMIResult(BaseModel):
    bmi: float
    category: str
    status: StatusLevel


class MemberHealthSummary(BaseModel):
    member: FamilyMember
    metrics: List[MetricSummary] = Field(default_factory=list)
    bmi: Optional[BMIResult] = None


# Medications


class Medication(Row):
    id: str
    family_id: str
    member_id: str
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    instructions: Optional[str] = None
    prescribed_by: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class MedicationCreate(BaseModel):
    member_id: str
    name: str = Field(..., min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    instructions: Optional[str] = None
    prescribed_by: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True
    notes: Optional[str] = None


class MedicationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    instructions: Optional[str] = None
    prescribed_by: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


class MedicationLog(Row):
    id: str
    medication_id: str
    taken_at: datetime
    status: MedicationLogStatus
    notes: Optional[str] = None
    logged_by: Optional[str] = None


class MedicationLogCreate(BaseModel):
    taken_at: Optional[datetime] = None
    status: MedicationLogStatus = MedicationLogStatus.TAKEN
    notes: Optional[str] = None


class TodayMedication(Medication):
    logs: List[MedicationLog] = Field(default_factory=list)


class AdherenceStats(BaseModel):
    total: int = 0
    taken: int = 0
    skipped: int = 0
    late: int = 0
    adherence_rate: int = 0


# Vaccinations


class Vaccination(Row):
    id: str
    family_id: str
    member_id: str
    vaccine_name: str
    dose_number: Optional[int] = None
    date_given: Optional[date] = None
    date_due: Optional[date] = None
    provider: Optional[str] = None
    location: Optional[str] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    reminder_enabled: Optional[bool] = None
    reminder_sent: Optional[bool] = None
    status: Optional[VaccinationStatus] = None


class VaccinationCreate(BaseModel):
    member_id: str
    vaccine_name: str = Field(..., min_length=1)
    dose_number: Optional[int] = Field(default=None, ge=1)
    date_given: Optional[date] = None
    date_due: Optional[date] = None
    provider: Optional[str] = None
    location: Optional[str] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    reminder_enabled: bool = True


class VaccinationUpdate(BaseModel):
    vaccine_name: Optional[str] = Field(default=None, min_length=1)
    dose_number: Optional[int] = Field(default=None, ge=1)
    date_given: Optional[date] = None
    date_due: Optional[date] = None
    provider: Optional[str] = None
    location: Optional[str] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None
    reminder_enabled: Optional[bool] = None


class VaccinationScheduleItem(Row):
    id: str
    vaccine_name: str
    dose_number: Optional[int] = None
    age_months_min: int
    age_months_max: Optional[int] = None
    is_mandatory: Optional[bool] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None


class DueVaccine(BaseModel):
    schedule: VaccinationScheduleItem
    status: VaccinationStatus


class VaccinationSummary(BaseModel):
    total: int = 0
    completed: int = 0
    overdue: int = 0
    due: int = 0
    upcoming: int = 0


# Doctor visits


class DoctorVisit(Row):
    id: str
    family_id: str
    member_id: str
    visit_date: datetime
    visit_type: Optional[str] = None
    status: VisitStatus = VisitStatus.SCHEDULED
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    reminder_enabled: Optional[bool] = None
    reminder_sent: Optional[bool] = None


class DoctorVisitCreate(BaseModel):
    member_id: str
    visit_date: datetime
    visit_type: Optional[str] = None
    status: VisitStatus = VisitStatus.SCHEDULED
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    reminder_enabled: bool = True


class DoctorVisitUpdate(BaseModel):
    visit_date: Optional[datetime] = None
    visit_type: Optional[str] = None
    status: Optional[VisitStatus] = None
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    reason: Optional[str] = None
    diagnosis: Optional[str] = None
    notes: Optional[str] = None
    reminder_enabled: Optional[bool] = None


# Documents


class DocumentCategory(Row):
    id: str
    family_id: Optional[str] = None
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None
    is_system: Optional[bool] = None


class MedicalDocument(Row):
    id: str
    family_id: str
    member_id: str
    title: str
    document_type: Optional[str] = None
    category_id: Optional[str] = None
    file_path: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    document_date: Optional[date] = None
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    uploaded_by: Optional[str] = None
    created_at: Optional[datetime] = None


class MedicalDocumentCreate(BaseModel):
    member_id: str
    title: str = Field(..., min_length=1)
    file_path: str = Field(..., min_length=1)
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = None
    document_type: Optional[str] = None
    category_id: Optional[str] = None
    document_date: Optional[date] = None
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None


class MedicalDocumentUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    document_type: Optional[str] = None
    category_id: Optional[str] = None
    document_date: Optional[date] = None
    doctor_name: Optional[str] = None
    hospital_name: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None


class DocumentPathRequest(BaseModel):
    member_id: str
    file_name: str = Field(..., min_length=1)


class DocumentPathResponse(BaseModel):
    bucket: str
    file_path: str


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


# Growth


class GrowthRecord(Row):
    id: str
    family_id: Optional[str] = None
    member_id: str
    measured_at: date
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    head_circumference_cm: Optional[float] = None
    bmi: Optional[float] = None
    age_months: Optional[int] = None
    height_percentile: Optional[int] = None
    weight_percentile: Optional[int] = None
    bmi_percentile: Optional[int] = None
    head_circumference_percentile: Optional[int] = None
    notes: Optional[str] = None


class GrowthRecordCreate(BaseModel):
    member_id: str
    measured_at: Optional[date] = None
    height_cm: Optional[float] = Field(default=None, gt=0, le=250)
    weight_kg: Optional[float] = Field(default=None, gt=0, le=300)
    head_circumference_cm: Optional[float] = Field(default=None, gt=0, le=80)
    notes: Optional[str] = None


class Milestone(Row):
    id: str
    member_id: str
    milestone_type: MilestoneType
    milestone_name: str
    achieved_date: date
    age_months: Optional[int] = None
    notes: Optional[str] = None


class MilestoneCreate(BaseModel):
    member_id: str
    milestone_type: MilestoneType
    milestone_name: str = Field(..., min_length=1)
    achieved_date: date
    age_months: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class ChartPoint(BaseModel):
    age_months: int
    p3: float
    p15: float
    p50: float
    p85: float
    p97: float
    value: Optional[float] = None


# Emergency card


class EmergencyTokenResponse(BaseModel):
    token: str
    expires_at: datetime
    url: str


class EmergencyCard(BaseModel):
    name: str
    birth_date: Optional[date] = None
    avatar_url: Optional[str] = None
    blood_type: Optional[str] = None
    allergies: Optional[List[str]] = None
    conditions: Optional[List[str]] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    emergency_contact_relationship: Optional[str] = None


# Fitness


class ConnectedAccount(Row):
    id: str
    user_id: str
    family_member_id: str
    provider: str
    sync_enabled: Optional[bool] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None


class GarminConnectRequest(BaseModel):
    member_id: str


class GarminConnectResponse(BaseModel):
    authorize_url: str


class SyncResponse(BaseModel):
    success: bool
    metrics_inserted: int = 0
    metrics_skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class FitnessMetrics(BaseModel):
    steps: List[HealthMetric] = Field(default_factory=list)
    heart_rate: List[HealthMetric] = Field(default_factory=list)
    sleep: List[HealthMetric] = Field(default_factory=list)


# Notifications


class NotificationPreferences(BaseModel):
    vaccination_reminders: bool = True
    medication_reminders: bool = True
    appointment_reminders: bool = True
    health_insights: bool = True
    reminder_days_before: int = Field(default=3, ge=0, le=30)
    quiet_hours_start: Optional[str] = "22:00"
    quiet_hours_end: Optional[str] = "07:00"


class NotificationPreferencesUpdate(BaseModel):
    vaccination_reminders: Optional[bool] = None
    medication_reminders: Optional[bool] = None
    appointment_reminders: Optional[bool] = None
    health_insights: Optional[bool] = None
    reminder_days_before: Optional[int] = Field(default=None, ge=0, le=30)
    quiet_hours_start: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}(:\d{2})?$")
    quiet_hours_end: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}(:\d{2})?$")


class PushSubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class PushSubscriptionCreate(BaseModel):
    endpoint: str = Field(..., min_length=1)
    keys: PushSubscriptionKeys


class PushSubscriptionDelete(BaseModel):
    endpoint: str = Field(..., min_length=1)


class PushSubscription(Row):
    id: str
    user_id: str
    endpoint: str
    is_active: bool = True
    last_used_at: Optional[datetime] = None


class NotificationRunResult(BaseModel):
    vaccination_reminders: int = 0
    medication_reminders: int = 0
    appointment_reminders: int = 0
    sent: int = 0
    failed: int = 0
    skipped_quiet_hours: int = 0


# Dashboard


class MemberOverview(FamilyMember):
    latest_metrics: List[HealthMetric] = Field(default_factory=list)


class DashboardAlert(BaseModel):
    kind: str = Field(description="medication_ending | upcoming_visit")
    member_id: str
    member_name: Optional[str] = None
    title: str
    message: str
    days_until: int
    entity_id: str


class ActivityItem(BaseModel):
    kind: str = Field(description="metric | document | medication_log")
    id: str
    title: str
    occurred_at: datetime
    member_name: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
