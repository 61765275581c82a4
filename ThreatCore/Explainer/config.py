from ..config import CoreConfig


class ExplainerConfig:
    """Wording, colors and limits used when explaining verdicts"""

    DATABASE_URL = CoreConfig.DATABASE_URL

    CATEGORY_COLORS = {
        'sender': '#ef4444',
        'content': '#f97316',
        'urls': '#eab308',
        'attachments': '#8b5cf6',
        'behavioral': '#3b82f6',
        'authentication': '#10b981'
    }
    DEFAULT_COLOR = '#6b7280'

    # raw score category -> breakdown category
    BREAKDOWN_CATEGORIES = {
        'sender': 'sender',
        'content': 'content',
        'url': 'urls',
        'attachment': 'attachments',
        'behavioral': 'behavioral',
        'header': 'authentication'
    }
    CATEGORY_NAMES = {
        'sender': 'Sender',
        'content': 'Content',
        'urls': 'URLs',
        'attachments': 'Attachments',
        'behavioral': 'Behavioral',
        'authentication': 'Authentication'
    }
    # feature importance category -> explanation factor category
    FACTOR_CATEGORIES = {
        'header': 'authentication',
        'content': 'content',
        'sender': 'sender',
        'url': 'url',
        'attachment': 'attachment',
        'behavioral': 'behavioral'
    }
    LAYER_NAMES = {
        'header': 'Header/Auth',
        'content': 'Content',
        'sender': 'Sender',
        'url': 'URL',
        'attachment': 'Attachment',
        'behavioral': 'Behavioral'
    }

    CONFIDENCE_DESCRIPTIONS = {
        'very_high': 'Very high confidence - Strong detection signals across multiple indicators',
        'high': 'High confidence - Clear threat indicators detected',
        'moderate': 'Moderate confidence - Some suspicious indicators present',
        'low': 'Low confidence - Minor concerns detected',
        'very_low': 'Very low confidence - Minimal risk indicators'
    }

    END_USER_BRIEF = {
        'phishing': 'This email appears to be a phishing attempt trying to steal your information.',
        'bec': 'This email appears to impersonate someone in your organization to request money or information.',
        'malware': 'This email contains suspicious attachments that may harm your computer.',
        'spam': 'This email appears to be spam or unwanted marketing.',
        'clean': 'This email appears to be safe.'
    }
    AUDIENCE_TEMPLATES = {
        'end_user': {
            'prefix': 'Our security system has flagged this email because',
            'suffix': 'If you are unsure, please contact your IT department before taking any action.'
        },
        'analyst': {
            'prefix': 'Detection triggered by the following factors:',
            'suffix': 'Review the full signal analysis for detailed investigation.'
        },
        'admin': {
            'prefix': 'Technical Analysis Summary:',
            'suffix': 'Full feature importance and threshold details available below.'
        },
        'executive': {
            'prefix': 'Security Alert Summary:',
            'suffix': 'Contact security team for detailed investigation.'
        }
    }

    THREAT_TYPE_NAMES = {
        'phishing': 'Phishing',
        'bec': 'Business Email Compromise (BEC)',
        'malware': 'Malware',
        'spam': 'Spam',
        'clean': 'Clean'
    }

    FACTOR_DESCRIPTIONS = {
        'sender': {
            'lookalike_domain': 'The sender domain closely resembles a legitimate domain',
            'new_domain': 'The sender domain was recently registered',
            'free_email': 'The sender is using a free email provider',
            'disposable_email': 'The sender is using a disposable email address',
            'first_contact': 'This is the first email from this sender',
            'vip_impersonation': 'The sender appears to impersonate an executive',
            'low_reputation': 'The sender has a poor reputation score'
        },
        'content': {
            'urgency': 'The email uses urgent or pressuring language',
            'credential_request': 'The email asks for login credentials',
            'financial_request': 'The email requests a financial transaction',
            'threat_language': 'The email contains threatening language',
            'grammar_errors': 'The email contains unusual grammar patterns'
        },
        'url': {
            'malicious_url': 'The email contains links to known malicious sites',
            'shortened_url': 'The email uses URL shortening services',
            'ip_url': 'The email contains links with IP addresses instead of domains',
            'redirect_chain': 'The email contains links with multiple redirects'
        },
        'attachment': {
            'executable': 'The email contains executable files',
            'macro_enabled': 'The email contains documents with macros',
            'password_protected': 'The email contains password-protected archives',
            'double_extension': 'The email contains files with suspicious double extensions'
        },
        'behavioral': {
            'unusual_time': 'The email was sent at an unusual time',
            'volume_spike': 'Unusual email volume detected from this sender',
            'new_recipient': 'Email sent to new recipients'
        },
        'authentication': {
            'spf': 'SPF authentication failed',
            'dkim': 'DKIM signature verification failed',
            'dmarc': 'DMARC policy check failed',
            'reply_to_mismatch': 'Reply-To address differs from sender'
        }
    }

    IMPORTANCE_SCAN = 10
    END_USER_FACTOR_LIMIT = 3
    FACTOR_LIMIT = 10

    TRIGGERED_CATEGORY_SCORE = 30
    SIGNAL_CONTRIBUTION = 0.05
    REVIEW_CONFIDENCE = 0.6

    SIMILARITY_THRESHOLD = 0.25
    SIMILAR_SCAN_LIMIT = 100
    SIMILAR_WINDOW_DAYS = 90
    SIMILAR_DEFAULT_LIMIT = 5

    SAFE_COMPARISON_WINDOW_DAYS = 30
    DEFAULT_PERIOD_DAYS = 7
    SKIPPED_LAYER_OFFSET_MS = 10
