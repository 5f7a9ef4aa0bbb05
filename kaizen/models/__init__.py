from kaizen.models.user import User
from kaizen.models.token import Token, TokenType
from kaizen.models.api_key import APIKey
from kaizen.models.finance_category import FinanceCategory, EntryType
from kaizen.models.finance_journal import FinanceJournal
