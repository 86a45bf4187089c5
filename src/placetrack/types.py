from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Role = Literal["admin", "placement_director", "placement_staff", "department_hod", "student"]
JobStatus = Literal["Draft", "Active", "Closed", "Expired"]
PostingType = Literal["All Departments", "Selected Departments", "Single Department"]
JobType = Literal["Full-time", "Part-time", "Internship", "Contract", "Freelance"]
WorkMode = Literal["Work from office", "Work from home", "Hybrid"]
StartDateOption = Literal["Immediately", "Within 1 month", "Within 2 months", "Within 3 months", "Flexible"]
ApplicationStatus = Literal["Pending Response", "Applied", "Not Applied"]
JourneyAction = Literal["Viewed", "Clicked Apply", "Visited External Link", "Responded", "Updated"]
ViewType = Literal["List View", "Detail View", "Quick Preview"]
DeviceType = Literal["Desktop", "Mobile", "Tablet", "Unknown"]
ReferrerSource = Literal["Direct", "Job List", "Search", "Notification", "Email", "Other"]
Currency = Literal["INR", "USD", "EUR", "GBP"]

STAFF_ROLES: frozenset[str] = frozenset({"admin", "placement_director"})
MONITOR_ROLES: frozenset[str] = frozenset({"admin", "placement_director", "placement_staff"})

JOB_STATUSES: tuple[str, ...] = ("Draft", "Active", "Closed", "Expired")
JOB_TYPES: tuple[str, ...] = ("Full-time", "Part-time", "Internship", "Contract", "Freelance")
TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"Closed", "Expired"})


class Identity(BaseModel):
    user_id: int
    role: Role


class RequestMeta(BaseModel):
    ip_address: str = ""
    user_agent: str = ""


class EligibilityRules(BaseModel):
    departments: list[int] = Field(default_factory=list)
    min_cgpa: float | None = None
    max_backlogs: int | None = None


class StudentSnapshot(BaseModel):
    department_id: int | None = None
    cgpa: float | None = None
    backlogs: int | None = None


class EligibilityVerdict(BaseModel):
    eligible: bool
    reason: str | None = None


class CriterionCheck(BaseModel):
    required: Any = None
    student: Any = None
    passed: bool = True


class EligibilityCheck(BaseModel):
    is_eligible: bool
    reasons: list[str] = Field(default_factory=list)
    checked_at: datetime
    criteria: dict[str, CriterionCheck] = Field(default_factory=dict)


class DownloadedDocument(BaseModel):
    document_name: str
    downloaded_at: datetime | None = None


class SectionTime(BaseModel):
    description: float = 0
    requirements: float = 0
    compensation: float = 0
    company: float = 0


class ViewInteractions(BaseModel):
    scrolled_to_bottom: bool = False
    clicked_apply_button: bool = False
    clicked_company_link: bool = False
    downloaded_documents: list[DownloadedDocument] = Field(default_factory=list)
    time_spent_on_sections: SectionTime = Field(default_factory=SectionTime)


class DeviceInfo(BaseModel):
    type: DeviceType = "Unknown"
    browser: str = ""
    os: str = ""


class ReferrerInfo(BaseModel):
    source: ReferrerSource = "Direct"
    url: str = ""


class ViewContext(BaseModel):
    from_notification: bool = False
    from_search: bool = False
    search_query: str = ""
    filter_applied: bool = False
    filters: dict[str, str] = Field(default_factory=dict)


class ViewData(BaseModel):
    view_type: ViewType = "Detail View"
    duration: float = 0
    interactions: ViewInteractions | None = None
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    referrer: ReferrerInfo = Field(default_factory=ReferrerInfo)
    context: ViewContext = Field(default_factory=ViewContext)

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, value: float) -> float:
        if value < 0:
            raise ValueError("duration cannot be negative")
        return value


class ViewOutcome(BaseModel):
    view_id: int
    application_id: int
    eligibility_status: Literal["Eligible", "Not Eligible"]
    view_created: bool
    application_created: bool


class FanoutResult(BaseModel):
    job_id: int
    candidates: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    failed_student_ids: list[int] = Field(default_factory=list)


class CounterReport(BaseModel):
    job_id: int
    stored_total_views: int
    actual_total_views: int
    stored_total_applications: int
    actual_total_applications: int
    department_drift: dict[int, dict[str, int]] = Field(default_factory=dict)
    consistent: bool
    repaired: bool = False


class CompanyInfo(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    logo: str = ""
    website: str = ""
    about: str = Field(default="", max_length=2000)
    size: Literal["", "1-10", "11-50", "51-200", "201-500", "501-1000", "1000+"] = ""
    industry: str = Field(default="", max_length=100)
    founded: int | None = Field(default=None, ge=1800)


class SalaryBand(BaseModel):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)
    currency: Currency = "INR"
    period: Literal["Annual", "Monthly", "Hourly"] = "Annual"

    @model_validator(mode="after")
    def validate_range(self) -> SalaryBand:
        if self.min is not None and self.max is not None and self.max < self.min:
            raise ValueError("maximum salary cannot be below minimum salary")
        return self


class StipendBand(BaseModel):
    amount: float | None = Field(default=None, ge=0)
    currency: Currency = "INR"
    period: Literal["Monthly", "Weekly", "Daily"] = "Monthly"


class ProbationSalary(BaseModel):
    min: float | None = Field(default=None, ge=0)
    max: float | None = Field(default=None, ge=0)
    currency: Currency = "INR"
    period: Literal["Monthly", "Weekly", "Daily"] = "Monthly"


class ProbationTerms(BaseModel):
    has_probation: bool = False
    duration: int | None = Field(default=None, ge=1, le=12)
    salary: ProbationSalary = Field(default_factory=ProbationSalary)


class JobDocument(BaseModel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    uploaded_at: datetime | None = None


class EligibilityCriteria(BaseModel):
    departments: list[int] = Field(default_factory=list)
    min_cgpa: float | None = Field(default=None, ge=0, le=10)
    max_backlogs: int | None = Field(default=0, ge=0)
    graduation_years: list[int] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    experience_min: float = Field(default=0, ge=0)
    experience_max: float | None = Field(default=None, ge=0)

    @field_validator("graduation_years")
    @classmethod
    def validate_years(cls, value: list[int]) -> list[int]:
        if any(year < 2020 for year in value):
            raise ValueError("Invalid graduation year")
        return value


class JobFields(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    company: CompanyInfo | None = None
    description: str | None = Field(default=None, min_length=1, max_length=10000)
    key_responsibilities: list[str] | None = None
    requirements: list[str] | None = None
    skills_required: list[str] | None = None
    other_requirements: list[str] | None = None
    location: str | None = Field(default=None, min_length=1, max_length=200)
    work_mode: WorkMode | None = None
    job_type: JobType | None = None
    start_date: StartDateOption | None = None
    application_link: str | None = Field(default=None, min_length=1)
    deadline: datetime | None = None
    salary: SalaryBand | None = None
    stipend: StipendBand | None = None
    probation: ProbationTerms | None = None
    number_of_openings: int | None = Field(default=None, ge=1)
    work_environment_requirements: list[str] | None = None
    benefits: list[str] | None = None
    education_qualifications: list[str] | None = None
    documents: list[JobDocument] | None = None
    eligibility: EligibilityCriteria | None = None
    posting_type: PostingType | None = None
    target_departments: list[int] | None = None
    status: JobStatus | None = None


class JobCreate(JobFields):
    title: str = Field(min_length=1, max_length=200)
    company: CompanyInfo
    description: str = Field(min_length=1, max_length=10000)
    location: str = Field(min_length=1, max_length=200)
    application_link: str = Field(min_length=1)
    deadline: datetime
    posting_type: PostingType
    status: Literal["Draft", "Active"] = "Draft"


class JobUpdate(JobFields):
    pass


class JobListFilters(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    all: bool = False
    search: str = ""
    status: str = ""
    department: int | None = None
    job_type: str = ""
    sort_by: str = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
