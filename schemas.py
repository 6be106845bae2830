"""
Database Schemas for the Optical Store

Each Pydantic model describes one JSON collection (or the company singleton)
served by the backend. The JSON files use camelCase keys; every model accepts
either the camelCase alias or the Python field name and dumps by alias.

Use these schemas for validating input coming from the admin panel and for
parsing what the backend returns.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys and unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


Gender = Literal["men", "women", "unisex"]
Material = Literal["metal", "plastic", "titanium", "acetate", "mixed"]
FrameCategory = Literal["prescription", "sunglasses", "reading", "computer"]
FrameShape = Literal["rectangle", "round", "square", "oval", "cat-eye", "aviator", "wayfarer"]
SunglassesCategory = Literal["polarized", "fashion", "sport", "luxury", "classic"]
SunglassesShape = Literal[
    "rectangle", "round", "square", "oval", "cat-eye", "aviator", "wayfarer", "oversized"
]
ImageFolder = Literal["frames", "sunglasses", "company", "team"]
Priority = Literal["low", "medium", "high"]
InquiryStatus = Literal["new", "in-progress", "contacted", "quoted", "completed", "cancelled"]
ContactStatus = Literal["new", "in-progress", "contacted", "scheduled", "completed", "cancelled"]
ContactSource = Literal["contact-form", "phone", "walk-in", "referral"]

UNISEX = "unisex"

# -----------------
# Catalog
# -----------------

class FrameSize(BaseModel):
    # keys stay snake_case on the wire
    lens_width: float = Field(..., gt=0, description="Lens width in mm")
    bridge_width: float = Field(..., gt=0, description="Bridge width in mm")
    temple_length: float = Field(..., gt=0, description="Temple length in mm")


class LensFeatures(CamelModel):
    uv_protection: str = Field("", description="e.g. '100% UV400'")
    polarized: bool = False
    tinted: bool = False
    mirrored: bool = False


class CatalogItem(CamelModel):
    """
    Fields shared by frames and sunglasses.

    `images` is ordered; the first entry is the main image. `image_url` is the
    old single-image field and always mirrors `images[0]`.
    """
    id: str = Field(..., description="Stable unique identifier")
    name: str
    brand: str
    color: str = ""
    price: float = Field(..., ge=0, description="Price in store currency")
    in_stock: bool = True
    description: str = ""
    features: List[str] = Field(default_factory=list)
    gender: Gender = UNISEX
    frame_size: FrameSize
    images: List[str] = Field(default_factory=list, description="Image paths or URLs, main image first")
    image_url: Optional[str] = Field(None, description="Deprecated mirror of images[0]")

    @model_validator(mode="after")
    def _mirror_main_image(self):
        if self.images:
            self.image_url = self.images[0]
        elif self.image_url:
            # legacy single-image record
            self.images = [self.image_url]
        else:
            self.image_url = None
        return self

    def owned_images(self) -> List[str]:
        return list(self.images)


class Frame(CatalogItem):
    """Collection: "frames" """
    category: FrameCategory = "prescription"
    material: Material = "plastic"
    shape: FrameShape = "rectangle"


class Sunglasses(CatalogItem):
    """Collection: "sunglasses" """
    category: SunglassesCategory = "fashion"
    material: Material = "plastic"
    shape: SunglassesShape = "aviator"
    lens_features: LensFeatures = Field(default_factory=LensFeatures)


# -----------------
# Filter criteria
# -----------------

class PriceRange(BaseModel):
    min: float = Field(0, ge=0)
    max: float = Field(100000, ge=0)


class FrameFilters(CamelModel):
    brand: Optional[str] = None
    category: Optional[str] = None
    material: Optional[str] = None
    shape: Optional[str] = None
    color: Optional[str] = None
    gender: Optional[str] = None
    price_range: Optional[PriceRange] = None
    in_stock: Optional[bool] = None


class SunglassesFilters(FrameFilters):
    polarized: Optional[bool] = None
    uv_protection: Optional[bool] = None


class DateRange(BaseModel):
    start: datetime
    end: datetime


class InquiryFilters(CamelModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    product_type: Optional[Literal["frame", "sunglasses"]] = None
    assigned_to: Optional[str] = None
    date_range: Optional[DateRange] = None


class ContactFilters(CamelModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    service_interest: Optional[str] = None
    assigned_to: Optional[str] = None
    source: Optional[str] = None
    date_range: Optional[DateRange] = None


# -----------------
# Company singleton
# -----------------

class CompanyInfo(CamelModel):
    name: str = ""
    tagline: str = ""
    description: str = ""
    established: str = ""
    logo: str = ""


class Address(CamelModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""


class PhoneNumbers(CamelModel):
    primary: str = ""
    secondary: str = ""


class EmailAddresses(CamelModel):
    primary: str = ""
    support: str = ""


class SocialMedia(CamelModel):
    facebook: str = ""
    instagram: str = ""
    twitter: str = ""


class ContactInfo(CamelModel):
    address: Address = Field(default_factory=Address)
    phone: PhoneNumbers = Field(default_factory=PhoneNumbers)
    email: EmailAddresses = Field(default_factory=EmailAddresses)
    website: str = ""
    social_media: SocialMedia = Field(default_factory=SocialMedia)


class DayHours(CamelModel):
    open: str = "09:00"
    close: str = "18:00"
    closed: bool = False


class ServiceInfo(CamelModel):
    id: str
    name: str
    description: str = ""
    price: Union[str, float] = ""
    duration: str = ""
    icon: str = ""


class FeatureInfo(CamelModel):
    title: str
    description: str = ""
    icon: str = ""


class Testimonial(CamelModel):
    id: str
    name: str
    rating: float = Field(5, ge=0, le=5)
    comment: str = ""
    date: str = ""
    verified: bool = False


class TeamMember(CamelModel):
    name: str
    position: str = ""
    description: str = ""
    image: str = ""


class AboutPageContent(CamelModel):
    mission: str = ""
    vision: str = ""
    values: List[str] = Field(default_factory=list)
    history: str = ""
    team: List[TeamMember] = Field(default_factory=list)


class QuickLink(CamelModel):
    title: str
    url: str


class FooterContent(CamelModel):
    quick_links: List[QuickLink] = Field(default_factory=list)
    about_text: str = ""
    copyright_text: str = ""


class CtaButtons(CamelModel):
    frames: str = ""
    sunglasses: str = ""
    appointment: str = ""


class SectionHeadings(CamelModel):
    why_choose: str = ""
    why_choose_description: str = ""
    featured_products: str = ""
    featured_products_description: str = ""
    visit_us: str = ""
    visit_us_description: str = ""
    final_cta: str = ""
    final_cta_description: str = ""


class HomePageContent(CamelModel):
    hero_title: str = ""
    hero_subtitle: str = ""
    cta_buttons: CtaButtons = Field(default_factory=CtaButtons)
    sections_headings: SectionHeadings = Field(default_factory=SectionHeadings)


class FormLabels(CamelModel):
    name: str = "Name"
    email: str = "Email"
    phone: str = "Phone"
    service: str = "Service"
    message: str = "Message"
    submit: str = "Send"


class MapSection(CamelModel):
    title: str = ""
    description: str = ""


class ContactPageContent(CamelModel):
    hero_title: str = ""
    hero_description: str = ""
    form_labels: FormLabels = Field(default_factory=FormLabels)
    map_section: MapSection = Field(default_factory=MapSection)


class NavigationItem(CamelModel):
    name: str
    href: str


class SiteContent(CamelModel):
    navigation: List[NavigationItem] = Field(default_factory=list)


class CompanyData(CamelModel):
    """
    Singleton: "company"
    The whole document is read and written at once; admin edits replace one
    section at a time.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    company_info: CompanyInfo = Field(default_factory=CompanyInfo)
    contact: ContactInfo = Field(default_factory=ContactInfo)
    business_hours: Dict[str, DayHours] = Field(default_factory=dict, description="Keyed by weekday")
    services: List[ServiceInfo] = Field(default_factory=list)
    features: List[FeatureInfo] = Field(default_factory=list)
    testimonials: List[Testimonial] = Field(default_factory=list)
    about_page: AboutPageContent = Field(default_factory=AboutPageContent)
    footer: FooterContent = Field(default_factory=FooterContent)
    home_page: HomePageContent = Field(default_factory=HomePageContent)
    contact_page: ContactPageContent = Field(default_factory=ContactPageContent)
    site_content: SiteContent = Field(default_factory=SiteContent)


# -----------------
# Customer submissions
# -----------------

class CustomerInfo(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None


class InquiryProduct(CamelModel):
    id: str
    name: str
    brand: str
    type: Literal["frame", "sunglasses"]
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None


class Inquiry(CamelModel):
    """Collection: "inquiries" (newest first)"""
    id: str
    customer_info: CustomerInfo
    product: InquiryProduct
    message: str
    status: InquiryStatus = "new"
    priority: Priority = "medium"
    created_at: datetime
    updated_at: datetime
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[str] = None


class InquiryCreate(CamelModel):
    customer_info: CustomerInfo
    product: InquiryProduct
    message: str = Field(..., min_length=1)


class InquiryUpdate(CamelModel):
    status: Optional[InquiryStatus] = None
    priority: Optional[Priority] = None
    message: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[str] = None


class Contact(CamelModel):
    """Collection: "contacts" (newest first)"""
    id: str
    customer_info: CustomerInfo
    service_interest: str = ""
    message: str
    status: ContactStatus = "new"
    priority: Priority = "medium"
    created_at: datetime
    updated_at: datetime
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[str] = None
    source: ContactSource = "contact-form"


class ContactCreate(CamelModel):
    id: Optional[str] = None
    customer_info: CustomerInfo
    service_interest: str = ""
    message: str = Field(..., min_length=1)
    priority: Priority = "medium"
    source: ContactSource = "contact-form"
    created_at: Optional[datetime] = None


class ContactUpdate(CamelModel):
    status: Optional[ContactStatus] = None
    priority: Optional[Priority] = None
    service_interest: Optional[str] = None
    message: Optional[str] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    follow_up_date: Optional[str] = None
    source: Optional[ContactSource] = None


class SubmissionStats(CamelModel):
    total: int = 0
    new: int = 0
    in_progress: int = 0
    completed: int = 0
    this_month: int = 0
    this_week: int = 0


# -----------------
# Request bodies
# -----------------

class DeleteImageRequest(CamelModel):
    image_path: Optional[str] = None
