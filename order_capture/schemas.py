"""Order model accepted by the capture API and written to the document store."""

from pydantic import BaseModel, ConfigDict, Field

ORDER_STATUS_OPEN = "Open"

# Value the API explorer pre-fills for string fields; treated like a blank source.
SOURCE_PLACEHOLDER = "string"

# Products are synthetic labels product-0 .. product-10, also used as the shard key.
PRODUCT_PARTITIONS = 11


class Order(BaseModel):
    """A customer order.

    Field aliases are the names HTTP callers send (``EmailAddress``, ``Status``...).

    Attributes:
        id (str): Store-assigned identifier, empty until the order is persisted.
        email_address (str): Email address of the customer.
        preferred_language (str): Preferred language of the customer.
        product (str): Overwritten on persist with a ``product-<N>`` partition label.
        total (float): Order total, never negative.
        source (str): Backend that captured the order, e.g. App Service or a k8s cluster.
        status (str): Order status, overwritten on persist.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "EmailAddress": "customer@example.com",
                "PreferredLanguage": "en",
                "Product": "",
                "Total": 42.5,
                "Source": "",
                "Status": "Pending",
            }
        },
    )

    id: str = Field("", alias="ID", description="Assigned by the store on insert")
    email_address: str = Field(..., alias="EmailAddress", min_length=1)
    preferred_language: str = Field("", alias="PreferredLanguage")
    product: str = Field("", alias="Product")
    total: float = Field(0.0, alias="Total", ge=0)
    source: str = Field("", alias="Source")
    status: str = Field(..., alias="Status", min_length=1)

    def to_document(self) -> dict:
        """Build the stored document.

        Keys are the lowercased aliases (``emailaddress``, ``preferredlanguage``...),
        the layout of documents already in the collection.

        Returns:
            dict: Document ready for insertion.
        """
        return {key.lower(): value for key, value in self.model_dump(by_alias=True).items()}
